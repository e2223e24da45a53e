"""Replay sigrok session files (`.sr` zip archives) as a packet stream."""

from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from pathlib import Path
import re
import zipfile

from pdconform.errors import AcquisitionError
from pdconform.observability.logging import get_logger, log_event
from pdconform.pipeline.interfaces import End, Header, LogicData, PacketCallback


_LOGGER = get_logger("pdconform.capture")

_SAMPLERATE_PATTERN = re.compile(r"^\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[kMG]?Hz)?\s*$")
_UNITS = {None: 1, "Hz": 1, "kHz": 1_000, "MHz": 1_000_000, "GHz": 1_000_000_000}

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024


def parse_samplerate(text: str) -> int:
    """Parse strings like '1 MHz', '500 kHz' or '20000' into Hz."""

    match = _SAMPLERATE_PATTERN.match(text)
    if match is None:
        raise ValueError(f"Unparseable samplerate: {text!r}")
    return int(float(match.group("value")) * _UNITS[match.group("unit")])


def _member_order(name: str) -> int:
    suffix = name.rsplit("-", maxsplit=1)[-1]
    return int(suffix) if suffix.isdigit() else 0


@dataclass(slots=True)
class SrSession:
    """One loaded session file; run() delivers every packet synchronously."""

    path: Path
    samplerate: int | None
    unit_size: int
    members: list[str]
    chunk_size: int = DEFAULT_CHUNK_SIZE
    callbacks: list[PacketCallback] = field(default_factory=list)
    running: bool = False

    def add_callback(self, callback: PacketCallback) -> None:
        self.callbacks.append(callback)

    def _deliver(self, packet: Header | LogicData | End) -> None:
        for callback in self.callbacks:
            callback(packet)

    def start(self) -> None:
        self.running = True

    def run(self) -> None:
        if not self.running:
            raise AcquisitionError(f"Replay of {self.path} was not started")

        self._deliver(Header(samplerate=self.samplerate))
        # Keep each block a whole number of samples.
        block = max(self.unit_size, self.chunk_size - self.chunk_size % self.unit_size)
        # A sample split across two members is carried into the next one.
        carry = b""
        with zipfile.ZipFile(self.path) as archive:
            for member in self.members:
                raw = archive.read(member)
                log_event(_LOGGER, "capture_member", member=member, size=len(raw))
                payload = carry + raw
                whole = len(payload) - len(payload) % self.unit_size
                carry = payload[whole:]
                for offset in range(0, whole, block):
                    chunk = payload[offset : min(offset + block, whole)]
                    self._deliver(LogicData(data=chunk, unit_size=self.unit_size))
        if carry:
            raise AcquisitionError(
                f"{self.path} ends with a partial sample: {len(carry)} of {self.unit_size} bytes"
            )
        self._deliver(End())

    def stop(self) -> None:
        self.running = False


@dataclass(slots=True)
class SrZipReplay:
    """Capture replay collaborator for sigrok session files."""

    chunk_size: int = DEFAULT_CHUNK_SIZE

    def load(self, path: Path) -> SrSession:
        if not path.is_file():
            raise AcquisitionError(f"Capture file does not exist: {path}")
        try:
            with zipfile.ZipFile(path) as archive:
                names = archive.namelist()
                if "metadata" not in names:
                    raise AcquisitionError(f"{path} has no metadata member")
                metadata = archive.read("metadata").decode("utf-8")
        except zipfile.BadZipFile as exc:
            raise AcquisitionError(f"{path} is not a sigrok session file: {exc}") from exc

        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read_string(metadata)
        except configparser.Error as exc:
            raise AcquisitionError(f"Invalid metadata in {path}: {exc}") from exc

        device = next((s for s in parser.sections() if s.startswith("device ")), None)
        if device is None:
            raise AcquisitionError(f"{path} metadata has no device section")
        section = parser[device]

        capturefile = section.get("capturefile")
        if not capturefile:
            raise AcquisitionError(f"{path} metadata has no capturefile entry")
        members = sorted(
            (n for n in names if n == capturefile or n.startswith(f"{capturefile}-")),
            key=_member_order,
        )

        raw_rate = section.get("samplerate")
        samplerate: int | None = None
        if raw_rate is not None:
            try:
                samplerate = parse_samplerate(raw_rate)
            except ValueError as exc:
                raise AcquisitionError(str(exc)) from exc

        unit_size = section.getint("unitsize", fallback=1)
        if unit_size <= 0:
            raise AcquisitionError(f"Invalid unitsize {unit_size} in {path}")

        log_event(
            _LOGGER,
            "capture_loaded",
            path=str(path),
            samplerate=samplerate,
            unit_size=unit_size,
            members=len(members),
        )
        return SrSession(
            path=path,
            samplerate=samplerate,
            unit_size=unit_size,
            members=members,
            chunk_size=self.chunk_size,
        )


def write_session_file(
    path: Path,
    data: bytes,
    *,
    samplerate: str | None = "1 MHz",
    unit_size: int = 1,
    probes: int = 8,
    chunk_size: int | None = None,
) -> Path:
    """Write a minimal sigrok v2 session file holding `data`."""

    lines = ["[global]", "sigrok version=0.5.2", "", "[device 1]", "capturefile=logic-1"]
    lines.append(f"total probes={probes}")
    if samplerate is not None:
        lines.append(f"samplerate={samplerate}")
    lines.append("total analog=0")
    lines.extend(f"probe{idx + 1}=D{idx}" for idx in range(probes))
    lines.append(f"unitsize={unit_size}")

    step = chunk_size or max(len(data), 1)
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("version", "2")
        archive.writestr("metadata", "\n".join(lines) + "\n")
        for number, offset in enumerate(range(0, len(data), step), start=1):
            archive.writestr(f"logic-1-{number}", data[offset : offset + step])
    return path
