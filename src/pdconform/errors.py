"""Error kinds raised while running a decoder test case."""

from __future__ import annotations


class PdConformError(Exception):
    """Base class for all test-run errors."""


class FatalError(PdConformError):
    """Aborts the run and yields a non-zero verdict."""


class RecoverableError(PdConformError):
    """Logged where it occurs; the run continues."""


class ConfigurationError(FatalError):
    """Malformed test case: missing fields, bad bindings, unknown kinds or classes."""


class DecoderNotFound(FatalError):
    """No decoder definition exists for the requested id."""

    def __init__(self, decoder_id: str, reason: str | None = None) -> None:
        message = f"Decoder '{decoder_id}' not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.decoder_id = decoder_id


class StackingError(FatalError):
    """A decoder instance could not be stacked on its predecessor."""


class AcquisitionError(FatalError):
    """The capture could not be loaded or the decode session could not start."""


class DecodeError(FatalError):
    """A decoder raised while starting or decoding."""

    def __init__(self, instance_id: str, exc: BaseException) -> None:
        super().__init__(f"Decoder instance {instance_id} failed: {type(exc).__name__}: {exc}")
        self.instance_id = instance_id


class DispatchWriteError(RecoverableError):
    """Writing one output line to the sink failed."""


class CoverageStartError(RecoverableError):
    """Line coverage measurement could not be started."""


class CoverageQueryError(RecoverableError):
    """Coverage data for one module could not be retrieved."""


class CoverageReportError(RecoverableError):
    """The coverage text report could not be written."""
