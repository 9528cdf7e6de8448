"""
Error taxonomy for the card studio.

Action-blocking errors are raised to the caller; LoadError is only ever
stored on a failed ImageResource and absorbed by the readiness barrier.
"""


class CardStudioError(Exception):
    """Base class for all card studio errors."""


class ValidationError(CardStudioError):
    """Bad input (file type, empty upload, out-of-range parameter)."""


class DecodeError(CardStudioError):
    """Raster data could not be decoded."""


class EncodeError(CardStudioError):
    """A surface could not be serialized to image bytes."""


class LoadError(CardStudioError):
    """An embedded image failed to load."""


class ExportError(CardStudioError):
    """Rasterizing a composition failed; no file was produced."""


class ExportBusyError(ExportError):
    """An export over the same composition is already in flight."""


class RemoteWriteError(CardStudioError):
    """Object storage or listing write failed."""
