"""Load decoder definitions from a decoder search directory."""

from __future__ import annotations

from dataclasses import dataclass, field
import importlib.util
from pathlib import Path
import sys
from types import ModuleType
from typing import Any

from pdconform.engine.decoder import Decoder
from pdconform.errors import DecoderNotFound
from pdconform.observability.logging import get_logger, log_event


_LOGGER = get_logger("pdconform.engine")


@dataclass(frozen=True, slots=True)
class DecoderDefinition:
    """Immutable view of one decoder's declared interface."""

    id: str
    module: ModuleType
    decoder_class: type[Decoder]

    @property
    def annotation_classes(self) -> list[str]:
        return [str(item[0]) for item in self.decoder_class.annotations]

    @property
    def binary_classes(self) -> list[str]:
        return [str(item[0]) for item in self.decoder_class.binary]

    @property
    def channel_ids(self) -> list[str]:
        return [str(item["id"]) for item in self.decoder_class.channels]

    @property
    def optional_channel_ids(self) -> list[str]:
        return [str(item["id"]) for item in self.decoder_class.optional_channels]

    @property
    def option_defaults(self) -> dict[str, Any]:
        return {str(item["id"]): item.get("default") for item in self.decoder_class.options}

    @property
    def source_dirs(self) -> list[Path]:
        return [Path(entry) for entry in getattr(self.module, "__path__", [])]

    def describe(self) -> dict[str, Any]:
        cls = self.decoder_class
        return {
            "id": self.id,
            "name": cls.name,
            "inputs": list(cls.inputs),
            "outputs": list(cls.outputs),
            "channels": self.channel_ids,
            "optional_channels": self.optional_channel_ids,
            "options": {
                str(item["id"]): {
                    "default": item.get("default"),
                    "values": list(item.get("values", ())),
                }
                for item in cls.options
            },
            "annotations": self.annotation_classes,
            "binary": self.binary_classes,
        }


@dataclass(slots=True)
class DecoderRegistry:
    """Loads decoder packages once per id from a search directory."""

    search_dir: Path
    _loaded: dict[str, DecoderDefinition] = field(default_factory=dict)

    def _import(self, decoder_id: str) -> ModuleType:
        package_dir = (self.search_dir / decoder_id).resolve()
        init_path = package_dir / "__init__.py"
        if not init_path.is_file():
            raise DecoderNotFound(decoder_id, f"no package at {package_dir}")

        existing = sys.modules.get(decoder_id)
        if existing is not None and getattr(existing, "__file__", None) == str(init_path):
            return existing

        spec = importlib.util.spec_from_file_location(
            decoder_id,
            init_path,
            submodule_search_locations=[str(package_dir)],
        )
        if spec is None or spec.loader is None:
            raise DecoderNotFound(decoder_id, f"could not load {init_path}")
        module = importlib.util.module_from_spec(spec)
        # Registered before exec so `from .pd import Decoder` resolves.
        sys.modules[decoder_id] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            del sys.modules[decoder_id]
            raise DecoderNotFound(decoder_id, f"import failed: {exc}") from exc
        return module

    def load(self, decoder_id: str) -> DecoderDefinition:
        """Return the definition for `decoder_id`, importing it on first use."""

        cached = self._loaded.get(decoder_id)
        if cached is not None:
            return cached

        module = self._import(decoder_id)
        decoder_class = getattr(module, "Decoder", None)
        if not isinstance(decoder_class, type) or not issubclass(decoder_class, Decoder):
            raise DecoderNotFound(decoder_id, "module has no Decoder class")
        if decoder_class.id and decoder_class.id != decoder_id:
            log_event(
                _LOGGER,
                "decoder_id_mismatch",
                decoder=decoder_id,
                declared=decoder_class.id,
            )

        definition = DecoderDefinition(id=decoder_id, module=module, decoder_class=decoder_class)
        self._loaded[decoder_id] = definition
        log_event(_LOGGER, "decoder_loaded", decoder=decoder_id, path=str(module.__file__))
        return definition
