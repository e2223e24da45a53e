"""`pdconform decoders` command."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import TextIO

from pdconform.config.loader import resolve_decoders_dir
from pdconform.engine.registry import DecoderRegistry
from pdconform.errors import FatalError
from pdconform.observability.logging import configure_logging, get_logger, log_event


_LOGGER = get_logger("pdconform.cli")


@dataclass(slots=True)
class DecodersCommand:
    """Describe decoder definitions: channels, options and output classes."""

    ids: tuple[str, ...] = ()
    """Decoder ids to describe; all packages in the search directory when empty."""
    decoders_dir: Path | None = None


def _available(search_dir: Path) -> list[str]:
    if not search_dir.is_dir():
        return []
    return sorted(
        child.name
        for child in search_dir.iterdir()
        if child.is_dir() and (child / "__init__.py").is_file()
    )


def execute(command: DecodersCommand, stdout: TextIO | None = None) -> int:
    configure_logging("WARNING")
    search_dir = resolve_decoders_dir(str(command.decoders_dir) if command.decoders_dir else None)
    registry = DecoderRegistry(search_dir=search_dir)

    ids = list(command.ids) or _available(search_dir)
    payload = []
    try:
        for decoder_id in ids:
            payload.append(registry.load(decoder_id).describe())
    except FatalError as exc:
        log_event(_LOGGER, str(exc), level=logging.ERROR)
        return 1

    print(json.dumps(payload, indent=2, sort_keys=True), file=stdout)
    return 0
