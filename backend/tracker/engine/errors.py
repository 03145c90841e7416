"""Exceptions raised by the reconciliation engine and clip pipeline."""


class TrackerError(Exception):
    """Base class for tracker failures."""


class TargetGoneError(TrackerError):
    """A message the tracker references no longer exists."""

    def __init__(self, message: str, message_id: str | None = None):
        super().__init__(message)
        self.message_id = message_id


class ChannelGoneError(TargetGoneError):
    """The tracker's channel is deleted or the bot lost access to it."""


class LiveSourceError(TrackerError):
    """Live status or clip lookup failed upstream."""


class ClipConversionError(TrackerError):
    """Downloading, probing, transcoding or uploading a clip failed."""


class StorageUploadError(ClipConversionError):
    """Object storage rejected an upload."""
