"""
Talk-mode error taxonomy.

Gateway failures never appear here: the reasoning gateway absorbs them and
answers with a fallback sentence instead.
"""


class TalkModeError(Exception):
    """Base exception for the talk-mode flow."""


class IncompleteUploadBatch(TalkModeError):
    """Raised when an upload batch is missing the previous or current image."""

    def __init__(self, missing):
        self.missing = sorted(missing)
        super().__init__(f"Upload batch missing: {', '.join(self.missing)}")


class ImagesNotReady(TalkModeError):
    """Raised when a visual query arrives without a fresh image pair."""


class ImageNotFound(TalkModeError):
    """Raised when a tag has no image on the landing store."""


class InvalidSessionId(TalkModeError):
    """Raised when a session id cannot be used as a landing-store key."""


class ImageStorageError(TalkModeError):
    """Raised when an uploaded image cannot be written to disk."""
