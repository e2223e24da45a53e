"""Reference in-process decode engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Callable

import numpy as np

from pdconform.config.schema import OutputKind
from pdconform.engine.decoder import (
    OUTPUT_ANN,
    OUTPUT_BINARY,
    OUTPUT_PYTHON,
    SRD_CONF_SAMPLERATE,
    UNBOUND,
    Decoder,
)
from pdconform.engine.registry import DecoderDefinition, DecoderRegistry
from pdconform.errors import AcquisitionError, ConfigurationError, DecodeError, StackingError
from pdconform.observability.logging import get_logger, log_event
from pdconform.pipeline.interfaces import OutputCallback, OutputRecord


_LOGGER = get_logger("pdconform.engine")


def coerce_option(definition: DecoderDefinition, key: str, value: Any) -> Any:
    """Convert an option value to the type of the option's declared default."""

    declared = {str(item["id"]): item for item in definition.decoder_class.options}
    spec = declared.get(key)
    if spec is None:
        raise ConfigurationError(f"Decoder {definition.id} has no option '{key}'")

    default = spec.get("default")
    try:
        if isinstance(default, int):
            text = str(value).strip().lower()
            converted: Any = int(text, 16) if text.startswith("0x") else int(text)
        elif isinstance(default, float):
            converted = float(value)
        else:
            converted = str(value)
    except ValueError as exc:
        kind = type(default).__name__
        raise ConfigurationError(
            f"Option '{key}' of decoder {definition.id} requires a {kind} value, got '{value}'"
        ) from exc

    allowed = spec.get("values")
    if allowed and converted not in allowed:
        choices = ", ".join(str(item) for item in allowed)
        raise ConfigurationError(
            f"Invalid value '{value}' for option '{key}' of decoder {definition.id}; "
            f"expected one of: {choices}"
        )
    return converted


@dataclass(slots=True)
class _Instance:
    """Arena slot for one decoder instance."""

    instance_id: str
    definition: DecoderDefinition
    decoder: Decoder
    channel_map: dict[str, int]
    group_count: int
    parent: int | None = None
    children: list[int] = field(default_factory=list)


@dataclass(slots=True)
class Session:
    """Decode session; instances live in creation order and are addressed by index."""

    registry: DecoderRegistry
    instances: list[_Instance] = field(default_factory=list)
    callbacks: dict[OutputKind, OutputCallback] = field(default_factory=dict)
    samplerate: int | None = None
    started: bool = False
    destroyed: bool = False

    def _slot(self, handle: int) -> _Instance:
        if not 0 <= handle < len(self.instances):
            raise StackingError(f"Unknown decoder instance handle {handle}")
        return self.instances[handle]

    def _unique_id(self, decoder_id: str) -> str:
        taken = {item.instance_id for item in self.instances}
        if decoder_id not in taken:
            return decoder_id
        suffix = 2
        while f"{decoder_id}-{suffix}" in taken:
            suffix += 1
        return f"{decoder_id}-{suffix}"

    def new_instance(self, decoder_id: str, options: dict[str, Any]) -> int:
        definition = self.registry.load(decoder_id)
        values = dict(definition.option_defaults)
        for key, value in options.items():
            values[key] = coerce_option(definition, key, value)

        instance_id = self._unique_id(decoder_id)
        try:
            decoder = definition.decoder_class()
        except Exception as exc:
            raise DecodeError(instance_id, exc) from exc
        decoder.options = values  # type: ignore[assignment]

        declared = definition.channel_ids + definition.optional_channel_ids
        handle = len(self.instances)
        decoder._put_hook = partial(self._put, handle)
        self.instances.append(
            _Instance(
                instance_id=instance_id,
                definition=definition,
                decoder=decoder,
                channel_map={name: idx for idx, name in enumerate(declared)},
                group_count=(len(declared) + 7) // 8 or 1,
            )
        )
        log_event(_LOGGER, "instance_created", instance=instance_id, handle=handle)
        return handle

    def instance_id(self, handle: int) -> str:
        return self._slot(handle).instance_id

    def bind_channels(self, handle: int, mapping: dict[str, int], group_count: int) -> None:
        slot = self._slot(handle)
        required = slot.definition.channel_ids
        declared = required + slot.definition.optional_channel_ids

        unknown = sorted(set(mapping) - set(declared))
        if unknown:
            raise ConfigurationError(
                f"Decoder {slot.definition.id} has no channel(s): {', '.join(unknown)}"
            )
        missing = [name for name in required if name not in mapping]
        if missing:
            raise ConfigurationError(
                f"Required channel(s) of {slot.definition.id} not bound: {', '.join(missing)}"
            )

        slot.channel_map = {name: mapping.get(name, -1) for name in declared}
        slot.group_count = group_count

    def stack(self, parent: int, child: int) -> None:
        upper = self._slot(child)
        lower = self._slot(parent)
        if parent == child:
            raise StackingError(f"Cannot stack {upper.instance_id} on itself")
        if upper.parent is not None:
            raise StackingError(f"{upper.instance_id} is already stacked")

        cursor: int | None = parent
        while cursor is not None:
            if cursor == child:
                raise StackingError(
                    f"Stacking {upper.instance_id} on {lower.instance_id} creates a cycle"
                )
            cursor = self.instances[cursor].parent

        outputs = set(lower.decoder.outputs)
        inputs = set(upper.decoder.inputs)
        if outputs and inputs and not outputs & inputs:
            raise StackingError(
                f"{upper.instance_id} (inputs {sorted(inputs)}) cannot consume "
                f"{lower.instance_id} (outputs {sorted(outputs)})"
            )

        upper.parent = parent
        lower.children.append(child)
        log_event(_LOGGER, "instance_stacked", parent=lower.instance_id, child=upper.instance_id)

    def register_output_callback(self, kind: OutputKind, callback: OutputCallback) -> None:
        self.callbacks[kind] = callback

    def set_metadata(self, samplerate: int) -> None:
        if self.started:
            raise AcquisitionError("Metadata must be set before the session starts")
        if samplerate <= 0:
            raise AcquisitionError(f"Invalid samplerate {samplerate}")
        self.samplerate = int(samplerate)
        for slot in self.instances:
            self._call(slot, slot.decoder.metadata, SRD_CONF_SAMPLERATE, self.samplerate)

    def start(self) -> None:
        if self.started:
            raise AcquisitionError("Session already started")
        if self.samplerate is None:
            raise AcquisitionError("Session started before samplerate metadata was set")
        for slot in self.instances:
            self._call(slot, slot.decoder.start)
        self.started = True

    def send(self, start_sample: int, end_sample: int, data: bytes) -> None:
        if not self.started:
            raise AcquisitionError("Samples sent before the session was started")
        count = end_sample - start_sample
        if count <= 0:
            return
        stride, remainder = divmod(len(data), count)
        if stride == 0 or remainder:
            raise AcquisitionError(
                f"{len(data)} bytes do not divide into {count} samples"
            )

        raw = np.frombuffer(data, dtype=np.uint8).reshape(count, stride)
        bits = np.unpackbits(raw, axis=1, bitorder="little")
        for slot in self.instances:
            if slot.parent is not None:
                continue
            samples = np.full((count, len(slot.channel_map)), UNBOUND, dtype=np.uint8)
            for column, index in enumerate(slot.channel_map.values()):
                if index < 0:
                    continue
                if index >= bits.shape[1]:
                    raise AcquisitionError(
                        f"{slot.instance_id} reads logic channel {index}, "
                        f"capture has {bits.shape[1]}"
                    )
                samples[:, column] = bits[:, index]
            self._call(slot, slot.decoder.decode, start_sample, end_sample, samples)

    def destroy(self) -> None:
        if self.destroyed:
            return
        for slot in self.instances:
            slot.decoder._put_hook = None
        self.instances.clear()
        self.callbacks.clear()
        self.destroyed = True

    def _call(self, slot: _Instance, method: Callable[..., Any], *args: Any) -> None:
        try:
            method(*args)
        except DecodeError:
            raise
        except Exception as exc:
            raise DecodeError(slot.instance_id, exc) from exc

    def _emit(self, kind: OutputKind, record: OutputRecord) -> None:
        callback = self.callbacks.get(kind)
        if callback is not None:
            callback(record)

    def _put(self, handle: int, ss: int, es: int, output_id: int, data: Any) -> None:
        slot = self.instances[handle]
        ss, es = int(ss), int(es)

        if output_id == OUTPUT_PYTHON:
            # The next decoder up the stack sees the data before any observer.
            for child in slot.children:
                upper = self.instances[child]
                self._call(upper, upper.decoder.decode, ss, es, data)
            self._emit(
                OutputKind.RAW,
                OutputRecord(slot.instance_id, ss, es, OutputKind.RAW, data),
            )
            return

        if output_id == OUTPUT_ANN:
            class_index, texts = data
            if not 0 <= class_index < len(slot.definition.annotation_classes):
                raise DecodeError(
                    slot.instance_id, IndexError(f"annotation class {class_index} out of range")
                )
            self._emit(
                OutputKind.ANNOTATION,
                OutputRecord(
                    slot.instance_id, ss, es, OutputKind.ANNOTATION,
                    [str(text) for text in texts], class_index,
                ),
            )
            return

        if output_id == OUTPUT_BINARY:
            class_index, payload = data
            if not 0 <= class_index < len(slot.definition.binary_classes):
                raise DecodeError(
                    slot.instance_id, IndexError(f"binary class {class_index} out of range")
                )
            self._emit(
                OutputKind.BINARY,
                OutputRecord(
                    slot.instance_id, ss, es, OutputKind.BINARY, bytes(payload), class_index
                ),
            )
            return

        raise DecodeError(slot.instance_id, ValueError(f"unknown output id {output_id}"))


@dataclass(slots=True)
class ReferenceEngine:
    """Decode engine for Python decoder packages under one search directory."""

    registry: DecoderRegistry

    @classmethod
    def from_directory(cls, search_dir: Path) -> "ReferenceEngine":
        return cls(registry=DecoderRegistry(search_dir=search_dir))

    def load_decoder(self, decoder_id: str) -> DecoderDefinition:
        return self.registry.load(decoder_id)

    def new_session(self) -> Session:
        return Session(registry=self.registry)
