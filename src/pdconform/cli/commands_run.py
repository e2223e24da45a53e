"""`pdconform run` command."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Literal, TextIO

from pdconform.capture.srzip import SrZipReplay
from pdconform.config.loader import build_test_case, resolve_decoders_dir
from pdconform.engine.session import ReferenceEngine
from pdconform.errors import FatalError
from pdconform.linecov.tool import coverage_py_factory
from pdconform.observability.logging import configure_logging, get_logger, log_event
from pdconform.pipeline.executor import execute as execute_case


_LOGGER = get_logger("pdconform.cli")


@dataclass(slots=True)
class RunCommand:
    """Replay a capture through a decoder stack and print one decoder's output."""

    pd: tuple[str, ...] = ()
    """Decoders bottom to top: id[:name=idx,...[:key=value,...]]."""
    output: str | None = None
    """Output selector: decoder:annotation|binary|raw|exception[:class]."""
    input: str | None = None
    """Capture file (.sr session) to replay."""
    output_file: str | None = None
    """Write output lines here instead of standard output."""
    coverage_report: str | None = None
    """Measure decoder line coverage and write the text report here."""
    coverage_summary: Literal["mean", "sum"] | None = None
    """All-scope coverage summary mode; mean unless set here or by the loaded case."""
    case: str | None = None
    """Load a TestCase from a module_or_path:attribute reference."""
    decoders_dir: Path | None = None
    debug: bool = False
    log_format: Literal["text", "json"] = "text"


def execute(command: RunCommand, stdout: TextIO | None = None) -> int:
    configure_logging("DEBUG" if command.debug else "WARNING", command.log_format)

    try:
        case = build_test_case(
            pds=list(command.pd),
            output=command.output,
            input_path=command.input,
            output_file=command.output_file,
            coverage_report=command.coverage_report,
            coverage_summary=command.coverage_summary,
            decoders_dir=str(command.decoders_dir) if command.decoders_dir else None,
            case_ref=command.case,
        )
    except FatalError as exc:
        log_event(_LOGGER, str(exc), level=logging.ERROR)
        return 1

    engine = ReferenceEngine.from_directory(resolve_decoders_dir(case.decoders_dir))
    result = execute_case(
        case,
        engine=engine,
        replay=SrZipReplay(),
        coverage_factory=coverage_py_factory,
        locate=lambda scope: engine.load_decoder(scope).source_dirs,
        stdout=stdout,
    )
    if result.write_failures:
        log_event(
            _LOGGER,
            f"{result.write_failures} output line(s) could not be written",
            level=logging.WARNING,
        )
    return result.exit_code
