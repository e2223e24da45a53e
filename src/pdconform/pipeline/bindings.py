"""Resolve symbolic channel bindings for one decoder instance."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from pdconform.config.schema import ChannelBinding
from pdconform.errors import ConfigurationError


SAMPLES_PER_GROUP = 8


@dataclass(frozen=True, slots=True)
class ResolvedChannels:
    """Channel name to logic index mapping plus the byte groups it spans."""

    mapping: dict[str, int]
    group_count: int


def resolve_channels(bindings: Iterable[ChannelBinding]) -> ResolvedChannels:
    """Map channel names to indices; group_count = ceil((max_index + 1) / 8)."""

    mapping: dict[str, int] = {}
    for binding in bindings:
        if binding.name in mapping:
            raise ConfigurationError(f"Duplicate channel binding '{binding.name}'")
        if binding.index < 0:
            raise ConfigurationError(
                f"Channel '{binding.name}' has negative index {binding.index}"
            )
        mapping[binding.name] = binding.index

    if not mapping:
        raise ConfigurationError("No channel bindings to resolve")

    max_index = max(mapping.values())
    group_count = (max_index + SAMPLES_PER_GROUP) // SAMPLES_PER_GROUP
    return ResolvedChannels(mapping=dict(sorted(mapping.items())), group_count=group_count)
