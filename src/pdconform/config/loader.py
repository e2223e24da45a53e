"""Parse test case strings and load TestCase objects from Python references."""

from __future__ import annotations

import importlib
import importlib.util
import os
from pathlib import Path
from types import ModuleType
from typing import Any

from pdconform.config.schema import (
    ChannelBinding,
    CoverageConfig,
    DecoderSpec,
    OptionBinding,
    OutputKind,
    OutputSelector,
    TestCase,
)
from pdconform.errors import ConfigurationError


DECODERS_DIR_ENV = "PDCONFORM_DECODERS_DIR"
DEFAULT_DECODERS_DIR = Path("decoders")

_KIND_ALIASES = {
    "annotation": OutputKind.ANNOTATION,
    "binary": OutputKind.BINARY,
    "raw": OutputKind.RAW,
    "python": OutputKind.RAW,
    # Only needed so a decoder exception bombs out the run.
    "exception": OutputKind.RAW,
}


def _split_pair(text: str) -> tuple[str, str]:
    parts = text.split("=")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ConfigurationError(f"Syntax error at '{text}': expected key=value")
    return parts[0].strip(), parts[1].strip()


def parse_channel_binding(text: str) -> ChannelBinding:
    """Parse `name=index`."""

    name, raw_index = _split_pair(text)
    if not raw_index.isdigit():
        raise ConfigurationError(
            f"Syntax error at '{text}': channel index must be a non-negative integer"
        )
    return ChannelBinding(name=name, index=int(raw_index))


def parse_option_binding(text: str) -> OptionBinding:
    """Parse `key=value`; the value stays a string until the engine coerces it."""

    key, value = _split_pair(text)
    return OptionBinding(key=key, value=value)


def _parse_group(text: str, parser: Any) -> tuple[Any, ...]:
    if not text:
        return ()
    return tuple(parser(item) for item in text.split(",") if item)


def parse_decoder_spec(text: str) -> DecoderSpec:
    """Parse `<id>[:<name>=<idx>,...[:<key>=<value>,...]]`."""

    segments = text.split(":")
    if len(segments) > 3:
        raise ConfigurationError(f"Syntax error at '{text}': too many ':' separated fields")
    decoder_id = segments[0].strip()
    if not decoder_id:
        raise ConfigurationError(f"Syntax error at '{text}': missing decoder id")

    channels = _parse_group(segments[1], parse_channel_binding) if len(segments) > 1 else ()
    options = _parse_group(segments[2], parse_option_binding) if len(segments) > 2 else ()
    return DecoderSpec(decoder_id=decoder_id, channels=channels, options=options)


def parse_output_selector(text: str) -> OutputSelector:
    """Parse `decoderId:kind[:className]`."""

    parts = text.split(":")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ConfigurationError(f"Syntax error at '{text}': expected decoder:kind[:class]")
    if len(parts) > 3:
        raise ConfigurationError(f"Syntax error at '{text}': too many ':' separated fields")

    kind = _KIND_ALIASES.get(parts[1].strip().lower())
    if kind is None:
        raise ConfigurationError(f"Unknown output type '{parts[1]}'")

    class_name = parts[2] if len(parts) == 3 and parts[2] else None
    if class_name is not None and kind is OutputKind.RAW:
        raise ConfigurationError("Only annotation and binary output can select a class.")
    return OutputSelector(target=parts[0].strip(), kind=kind, class_name=class_name)


def _load_module(module_ref: str) -> ModuleType:
    path_candidate = Path(module_ref).expanduser()
    if path_candidate.exists():
        module_name = f"_pdconform_case_{path_candidate.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path_candidate)
        if spec is None or spec.loader is None:
            raise ConfigurationError(f"Could not load module from path: {path_candidate}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(module_ref)


def _resolve_attr(obj: Any, attr_path: str) -> Any:
    value = obj
    for part in attr_path.split("."):
        value = getattr(value, part)
    return value


def load_object(reference: str) -> Any:
    """Load object by `module_or_path:attribute` reference."""

    if ":" not in reference:
        raise ConfigurationError("Case reference must be in form 'module_or_path:attribute'.")
    module_ref, attr = reference.rsplit(":", maxsplit=1)
    try:
        module = _load_module(module_ref)
        return _resolve_attr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Could not resolve case reference '{reference}': {exc}") from exc


def load_test_case(reference: str) -> TestCase:
    """Load a TestCase from a Python reference."""

    loaded = load_object(reference)
    if not isinstance(loaded, TestCase):
        type_name = type(loaded).__name__
        raise ConfigurationError(f"Case reference must resolve to TestCase, got {type_name}.")
    return loaded


def build_test_case(
    *,
    pds: list[str],
    output: str | None,
    input_path: str | None,
    output_file: str | None = None,
    coverage_report: str | None = None,
    coverage_summary: str | None = None,
    decoders_dir: str | None = None,
    case_ref: str | None = None,
) -> TestCase:
    """Assemble a TestCase from command-line strings, optionally on top of a loaded case."""

    if case_ref is not None:
        case = load_test_case(case_ref)
        if pds:
            case.pipeline = [parse_decoder_spec(item) for item in pds]
        if output is not None:
            case.output = parse_output_selector(output)
        if input_path is not None:
            case.input = input_path
        if output_file is not None:
            case.output_file = output_file
        if coverage_report is not None:
            case.coverage.report_path = coverage_report
        if decoders_dir is not None:
            case.decoders_dir = decoders_dir
    else:
        if not pds:
            raise ConfigurationError("At least one protocol decoder is required.")
        if output is None:
            raise ConfigurationError("An output selector is required.")
        if input_path is None:
            raise ConfigurationError("An input capture file is required.")
        case = TestCase(
            pipeline=[parse_decoder_spec(item) for item in pds],
            output=parse_output_selector(output),
            input=input_path,
            output_file=output_file,
            coverage=CoverageConfig(report_path=coverage_report),
            decoders_dir=decoders_dir,
        )

    if coverage_summary is not None:
        if coverage_summary not in ("mean", "sum"):
            raise ConfigurationError(f"Unknown coverage summary mode '{coverage_summary}'")
        case.coverage.summary = coverage_summary  # type: ignore[assignment]
    validate_test_case(case)
    return case


def validate_test_case(case: TestCase) -> None:
    """Check the structural invariants a run depends on."""

    if not case.pipeline:
        raise ConfigurationError("Pipeline must contain at least one decoder.")
    if not case.input:
        raise ConfigurationError("An input capture file is required.")
    if not case.output.target:
        raise ConfigurationError("Output selector is missing a decoder id.")
    for spec in case.pipeline:
        names = [binding.name for binding in spec.channels]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate channel binding for decoder {spec.decoder_id}: {', '.join(duplicates)}"
            )
        for binding in spec.channels:
            if binding.index < 0:
                raise ConfigurationError(
                    f"Channel index for {spec.decoder_id}.{binding.name} must be >= 0"
                )


def resolve_decoders_dir(configured: str | None) -> Path:
    """Return the decoder search directory from config, environment or default."""

    if configured:
        return Path(configured).expanduser()
    from_env = os.environ.get(DECODERS_DIR_ENV)
    if from_env:
        return Path(from_env).expanduser()
    return DEFAULT_DECODERS_DIR
