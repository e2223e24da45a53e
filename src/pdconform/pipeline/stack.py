"""Build the ordered decoder instance stack for a pipeline definition."""

from __future__ import annotations

from dataclasses import dataclass

from pdconform.config.schema import DecoderSpec
from pdconform.errors import StackingError
from pdconform.observability.logging import get_logger, log_event
from pdconform.pipeline.bindings import resolve_channels
from pdconform.pipeline.interfaces import DecodeEngine, DecodeSession


_LOGGER = get_logger("pdconform.stack")


@dataclass(frozen=True, slots=True)
class StackedInstance:
    """One built instance and the index of the instance it consumes."""

    spec: DecoderSpec
    handle: int
    instance_id: str
    parent: int | None


@dataclass(frozen=True, slots=True)
class DecoderStack:
    """Instances in definition order; index 0 consumes raw samples."""

    instances: tuple[StackedInstance, ...]

    @property
    def bottom(self) -> StackedInstance:
        return self.instances[0]

    @property
    def top(self) -> StackedInstance:
        return self.instances[-1]

    @property
    def instance_ids(self) -> list[str]:
        return [item.instance_id for item in self.instances]


def build_stack(
    engine: DecodeEngine,
    session: DecodeSession,
    pipeline: list[DecoderSpec],
) -> DecoderStack:
    """Instantiate every spec in order and stack each on its predecessor."""

    built: list[StackedInstance] = []
    for position, spec in enumerate(pipeline):
        engine.load_decoder(spec.decoder_id)
        options = {binding.key: binding.value for binding in spec.options}
        handle = session.new_instance(spec.decoder_id, options)

        if spec.channels:
            resolved = resolve_channels(spec.channels)
            session.bind_channels(handle, resolved.mapping, resolved.group_count)

        parent: int | None = None
        if built:
            previous = built[-1]
            try:
                session.stack(previous.handle, handle)
            except StackingError:
                raise
            except Exception as exc:
                raise StackingError(
                    f"Failed to stack {spec.decoder_id} on {previous.instance_id}: {exc}"
                ) from exc
            parent = previous.handle

        instance = StackedInstance(
            spec=spec,
            handle=handle,
            instance_id=session.instance_id(handle),
            parent=parent,
        )
        built.append(instance)
        log_event(
            _LOGGER,
            "decoder_instantiated",
            position=position,
            instance=instance.instance_id,
            channels=len(spec.channels),
            options=len(spec.options),
        )

    if not built:
        raise StackingError("Pipeline definition is empty")
    return DecoderStack(instances=tuple(built))
