"""Dataclass-based test case schema."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class OutputKind(str, Enum):
    """Record shapes a decoder can emit."""

    ANNOTATION = "annotation"
    BINARY = "binary"
    RAW = "raw"


@dataclass(frozen=True, slots=True)
class ChannelBinding:
    """Symbolic decoder channel bound to a logic channel index."""

    name: str
    index: int


@dataclass(frozen=True, slots=True)
class OptionBinding:
    """Decoder option value applied at instantiation."""

    key: str
    value: str | int | float


@dataclass(slots=True)
class DecoderSpec:
    """One decoder in the pipeline; list position is the stacking order."""

    decoder_id: str
    channels: tuple[ChannelBinding, ...] = ()
    options: tuple[OptionBinding, ...] = ()


@dataclass(frozen=True, slots=True)
class OutputSelector:
    """The single output stream observed during a run."""

    target: str
    kind: OutputKind
    class_name: str | None = None


@dataclass(slots=True)
class CoverageConfig:
    """Line coverage options."""

    report_path: str | None = None
    summary: Literal["mean", "sum"] = "mean"

    @property
    def enabled(self) -> bool:
        return self.report_path is not None


@dataclass(slots=True)
class TestCase:
    """Top-level test case configuration."""

    __test__ = False

    pipeline: list[DecoderSpec]
    output: OutputSelector
    input: str
    output_file: str | None = None
    coverage: CoverageConfig = field(default_factory=CoverageConfig)
    decoders_dir: str | None = None
