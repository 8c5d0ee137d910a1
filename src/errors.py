class ClipWatchError(Exception):
    """Base class for failures raised by the detection pipeline."""


class CaptureFailure(ClipWatchError):
    """The display could not be captured or cropped this cycle."""


class OcrFailure(ClipWatchError):
    """The OCR collaborator failed or ran past its budget."""


class SaveRequestFailure(ClipWatchError):
    """The recording controller rejected or failed a save request."""


class ResolutionTimeout(ClipWatchError):
    """No clip file appeared within the resolver's retry budget."""


class MappingIOFailure(ClipWatchError):
    """The evidence mapping could not be read or flushed to disk."""


class ConnectionLost(ClipWatchError):
    """The recording controller connection is down."""


__all__ = [
    "ClipWatchError",
    "CaptureFailure",
    "OcrFailure",
    "SaveRequestFailure",
    "ResolutionTimeout",
    "MappingIOFailure",
    "ConnectionLost",
]
