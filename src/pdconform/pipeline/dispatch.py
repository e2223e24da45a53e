"""Filter decoder output down to one selected stream and serialize it."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, TextIO

from pdconform.config.schema import OutputKind, OutputSelector
from pdconform.errors import ConfigurationError, DispatchWriteError
from pdconform.observability.logging import get_logger, log_event
from pdconform.pipeline.interfaces import ClassCatalog, DecodeSession, OutputRecord


_LOGGER = get_logger("pdconform.dispatch")


def class_names(catalog: ClassCatalog, kind: OutputKind) -> list[str]:
    """Declared class names of `kind`, in declaration order."""

    if kind is OutputKind.ANNOTATION:
        return catalog.annotation_classes
    if kind is OutputKind.BINARY:
        return catalog.binary_classes
    return []


def resolve_class_index(catalog: ClassCatalog, selector: OutputSelector) -> int | None:
    """Return the index of the selector's class; first exact match wins."""

    if selector.class_name is None:
        return None
    if selector.kind is OutputKind.RAW:
        raise ConfigurationError("Only annotation and binary output can select a class.")

    for idx, name in enumerate(class_names(catalog, selector.kind)):
        if name == selector.class_name:
            return idx
    raise ConfigurationError(
        f"Output class '{selector.class_name}' not found in decoder {catalog.id}."
    )


def format_record(
    record: OutputRecord,
    names: list[str],
    render_repr: Callable[[Any], str] = repr,
) -> str:
    """Render `<ss>-<es> <instance>: <payload>` terminated by a newline."""

    head = f"{record.start_sample}-{record.end_sample} {record.instance_id}:"
    if record.kind is OutputKind.RAW:
        return f"{head} {render_repr(record.payload)}\n"

    index = record.class_index if record.class_index is not None else -1
    label = names[index] if 0 <= index < len(names) else str(index)
    if record.kind is OutputKind.BINARY:
        body = "".join(f" {byte:02x}" for byte in record.payload)
    else:
        body = "".join(f' "{text}"' for text in record.payload)
    return f"{head} {label}:{body}\n"


@dataclass(slots=True)
class OutputDispatcher:
    """Single-sink observer for the selected instance's output."""

    selector: OutputSelector
    catalog: ClassCatalog
    sink: TextIO
    class_index: int | None = None
    render_repr: Callable[[Any], str] = repr
    written: int = 0
    write_failures: int = 0

    @classmethod
    def for_selector(
        cls,
        selector: OutputSelector,
        catalog: ClassCatalog,
        sink: TextIO,
        render_repr: Callable[[Any], str] = repr,
    ) -> "OutputDispatcher":
        return cls(
            selector=selector,
            catalog=catalog,
            sink=sink,
            class_index=resolve_class_index(catalog, selector),
            render_repr=render_repr,
        )

    def attach(self, session: DecodeSession) -> None:
        """Register the one callback for the selector's output kind."""

        session.register_output_callback(self.selector.kind, self)

    def matches(self, record: OutputRecord) -> bool:
        if record.instance_id != self.selector.target:
            return False
        if record.kind is not self.selector.kind:
            return False
        if self.class_index is not None and record.class_index != self.class_index:
            return False
        return True

    def __call__(self, record: OutputRecord) -> None:
        if not self.matches(record):
            return

        line = format_record(
            record,
            class_names(self.catalog, record.kind),
            self.render_repr,
        )
        try:
            self.sink.write(line)
            self.sink.flush()
        except (OSError, ValueError) as exc:
            self.write_failures += 1
            error = DispatchWriteError(f"{record.kind.value} output write failure: {exc}")
            log_event(_LOGGER, str(error), level=logging.ERROR, instance=record.instance_id)
            return
        self.written += 1
        log_event(_LOGGER, "record_written", line=line.rstrip("\n"))
