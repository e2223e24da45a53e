"""Base class for Python protocol decoders run by the reference engine.

A decoder package is a directory named after the decoder id whose
``__init__.py`` exposes a ``Decoder`` class. Class attributes declare the
decoder's interface:

    id, name, inputs, outputs
    channels, optional_channels   tuples of {'id': ..., 'name': ..., 'desc': ...}
    options                       tuple of {'id': ..., 'desc': ..., 'default': ..., 'values': (...)}
    annotations                   ordered tuple of (class_id, description)
    binary                        ordered tuple of (class_id, description)

The engine calls ``metadata(key, value)``, then ``start()``, then
``decode(ss, es, data)`` for every block of input. The bottom decoder
receives a ``numpy.ndarray`` of shape ``(n, channel_count)``; a stacked
decoder receives whatever its parent ``put()`` on its OUTPUT_PYTHON
stream.
"""

from __future__ import annotations

from typing import Any, Callable


OUTPUT_ANN = 0
OUTPUT_PYTHON = 1
OUTPUT_BINARY = 2

SRD_CONF_SAMPLERATE = 10000

UNBOUND = 0xFF


class Decoder:
    """Decoder definition and per-instance state."""

    api_version = 3
    id = ""
    name = ""
    longname = ""
    desc = ""
    inputs: list[str] = ["logic"]
    outputs: list[str] = []
    channels: tuple[dict[str, str], ...] = ()
    optional_channels: tuple[dict[str, str], ...] = ()
    options: tuple[dict[str, Any], ...] = ()
    annotations: tuple[tuple[str, ...], ...] = ()
    binary: tuple[tuple[str, ...], ...] = ()

    # Installed by the engine on each instance.
    _put_hook: Callable[[int, int, int, Any], None] | None = None

    def register(self, output_type: int, meta: Any = None) -> int:
        """Declare an output stream; the returned id is passed to put()."""

        if output_type not in (OUTPUT_ANN, OUTPUT_PYTHON, OUTPUT_BINARY):
            raise ValueError(f"Unknown output type: {output_type}")
        return output_type

    def put(self, ss: int, es: int, output_id: int, data: Any) -> None:
        if self._put_hook is None:
            raise RuntimeError(f"Decoder {self.id} is not attached to a session")
        self._put_hook(ss, es, output_id, data)

    def metadata(self, key: int, value: Any) -> None:
        pass

    def start(self) -> None:
        pass

    def decode(self, ss: int, es: int, data: Any) -> None:
        raise NotImplementedError
