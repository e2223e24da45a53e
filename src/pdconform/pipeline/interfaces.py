"""Contracts between the orchestrator and its external collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence, Union

from pdconform.config.schema import OutputKind


@dataclass(frozen=True, slots=True)
class Header:
    """First packet of a replayed capture."""

    samplerate: int | None


@dataclass(frozen=True, slots=True)
class LogicData:
    """One block of raw logic samples, `unit_size` bytes per sample."""

    data: bytes
    unit_size: int


@dataclass(frozen=True, slots=True)
class End:
    """End-of-stream marker."""


Packet = Union[Header, LogicData, End]
PacketCallback = Callable[[Packet], None]


@dataclass(frozen=True, slots=True)
class OutputRecord:
    """One piece of decoder output as delivered by the decode engine."""

    instance_id: str
    start_sample: int
    end_sample: int
    kind: OutputKind
    payload: Any
    class_index: int | None = None


OutputCallback = Callable[[OutputRecord], None]


class ClassCatalog(Protocol):
    """Declared output classes of a decoder definition, in declaration order."""

    @property
    def id(self) -> str:
        ...

    @property
    def annotation_classes(self) -> list[str]:
        ...

    @property
    def binary_classes(self) -> list[str]:
        ...


class DecodeSession(Protocol):
    """One decode session holding an ordered arena of decoder instances."""

    def new_instance(self, decoder_id: str, options: dict[str, Any]) -> int:
        ...

    def instance_id(self, handle: int) -> str:
        ...

    def bind_channels(self, handle: int, mapping: dict[str, int], group_count: int) -> None:
        ...

    def stack(self, parent: int, child: int) -> None:
        ...

    def register_output_callback(self, kind: OutputKind, callback: OutputCallback) -> None:
        ...

    def set_metadata(self, samplerate: int) -> None:
        ...

    def start(self) -> None:
        ...

    def send(self, start_sample: int, end_sample: int, data: bytes) -> None:
        ...

    def destroy(self) -> None:
        ...


class DecodeEngine(Protocol):
    """Loads decoder definitions and creates sessions."""

    def load_decoder(self, decoder_id: str) -> ClassCatalog:
        ...

    def new_session(self) -> DecodeSession:
        ...


class ReplaySession(Protocol):
    """A loaded capture ready to be replayed packet by packet."""

    def add_callback(self, callback: PacketCallback) -> None:
        ...

    def start(self) -> None:
        ...

    def run(self) -> None:
        ...

    def stop(self) -> None:
        ...


class CaptureReplay(Protocol):
    """Opens capture files for replay."""

    def load(self, path: Path) -> ReplaySession:
        ...


class CoverageTool(Protocol):
    """Line coverage measurement backend."""

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def analyze(self, path: Path) -> tuple[int, Sequence[int]]:
        ...

    def write_report(self, destination: Path) -> None:
        ...


CoverageToolFactory = Callable[[list[str]], CoverageTool]
ModuleLocator = Callable[[str], list[Path]]
