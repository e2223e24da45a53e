import logging
from pathlib import Path

import pytest

from pdconform.capture.srzip import write_session_file
from pdconform.config.schema import ChannelBinding, DecoderSpec, OutputKind, OutputSelector, TestCase
from pdconform.engine.session import ReferenceEngine


DECODERS_DIR = Path(__file__).resolve().parent / "decoders"

# bits 1,0,1,1 then 0,0,1,0 on channel 0 -> nibbles 0xd and 0x4.
EIGHT_SAMPLES = bytes([1, 0, 1, 1, 0, 0, 1, 0])


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger("pdconform")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def decoders_dir() -> Path:
    return DECODERS_DIR


@pytest.fixture
def engine() -> ReferenceEngine:
    return ReferenceEngine.from_directory(DECODERS_DIR)


@pytest.fixture
def capture(tmp_path: Path):
    def _make(data: bytes = EIGHT_SAMPLES, **kwargs) -> Path:
        return write_session_file(tmp_path / "capture.sr", data, **kwargs)

    return _make


def bits_spec() -> DecoderSpec:
    return DecoderSpec(decoder_id="bits", channels=(ChannelBinding("data", 0),))


def make_case(
    input_path: Path,
    pipeline: list[DecoderSpec] | None = None,
    output: OutputSelector | None = None,
    **kwargs,
) -> TestCase:
    return TestCase(
        pipeline=pipeline or [bits_spec()],
        output=output or OutputSelector(target="bits", kind=OutputKind.ANNOTATION),
        input=str(input_path),
        **kwargs,
    )
