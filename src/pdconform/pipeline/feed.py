"""Feed replayed capture packets into the decode session."""

from __future__ import annotations

from dataclasses import dataclass

from pdconform.errors import AcquisitionError, PdConformError
from pdconform.observability.logging import get_logger, log_event
from pdconform.pipeline.interfaces import DecodeSession, End, Header, LogicData, Packet


_LOGGER = get_logger("pdconform.feed")


@dataclass(slots=True)
class AcquisitionFeed:
    """Packet callback tracking the absolute sample cursor."""

    session: DecodeSession
    sample_cursor: int = 0
    started: bool = False
    blocks: int = 0
    ended: bool = False

    def __call__(self, packet: Packet) -> None:
        if isinstance(packet, Header):
            self._on_header(packet)
        elif isinstance(packet, LogicData):
            self._on_logic(packet)
        elif isinstance(packet, End):
            log_event(_LOGGER, "received_end", samples=self.sample_cursor, blocks=self.blocks)
            self.ended = True
        else:
            raise AcquisitionError(f"Unexpected packet type {type(packet).__name__}")

    def _on_header(self, packet: Header) -> None:
        log_event(_LOGGER, "received_header", samplerate=packet.samplerate)
        if self.started:
            raise AcquisitionError("Received a second header; the session is already running")
        if packet.samplerate is None:
            raise AcquisitionError("Getting samplerate failed")

        try:
            self.session.set_metadata(packet.samplerate)
        except PdConformError:
            raise
        except Exception as exc:
            raise AcquisitionError(f"Setting samplerate failed: {exc}") from exc

        try:
            self.session.start()
        except PdConformError:
            raise
        except Exception as exc:
            raise AcquisitionError(f"Session start failed: {exc}") from exc
        self.started = True

    def _on_logic(self, packet: LogicData) -> None:
        if not self.started:
            raise AcquisitionError("Received logic data before the capture header")
        if packet.unit_size <= 0:
            raise AcquisitionError(f"Invalid unit size {packet.unit_size}")

        count = len(packet.data) // packet.unit_size
        log_event(_LOGGER, "received_logic", samples=count)
        if count == 0:
            return
        start = self.sample_cursor
        self.session.send(start, start + count, packet.data[: count * packet.unit_size])
        self.sample_cursor = start + count
        self.blocks += 1
