"""
Image Landing Store for talk mode.

Holds the most recent "previous" and "current" frame per session on disk:

    <root>/<session_id>/previous.jpg
    <root>/<session_id>/current.jpg

A put always overwrites. There is no versioning and no queue of pending pairs.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from errors import ImageNotFound, InvalidSessionId

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ImageTag(Enum):
    """Slot names for the two images of a pair, in prompt order."""
    PREVIOUS = "previous"
    CURRENT = "current"


@dataclass(frozen=True)
class ImagePair:
    """Raw JPEG bytes for both slots of one upload batch."""
    previous: bytes
    current: bytes


def validate_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not SESSION_ID_PATTERN.match(session_id):
        raise InvalidSessionId(f"Invalid session id: {session_id!r}")
    return session_id


class ImageLandingStore:
    """Durable two-slot image storage, one directory per session."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str, tag: ImageTag) -> Path:
        return self.root / validate_session_id(session_id) / f"{tag.value}.jpg"

    def put(self, session_id: str, tag: ImageTag, data: bytes) -> None:
        """
        Write an image for a tag, replacing whatever was there.

        The bytes land in a temp file first and are moved into place with
        os.replace, so readers never see a partial image.
        """
        path = self._path(session_id, tag)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{tag.value}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.debug(f"Stored {tag.value} image for {session_id} ({len(data)} bytes)")

    def get(self, session_id: str, tag: ImageTag) -> bytes:
        path = self._path(session_id, tag)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ImageNotFound(f"No {tag.value} image for session {session_id}") from None

    def exists(self, session_id: str, tag: ImageTag) -> bool:
        return self._path(session_id, tag).is_file()

    def load_pair(self, session_id: str) -> ImagePair:
        """Read both slots. Raises ImageNotFound if either is missing."""
        return ImagePair(
            previous=self.get(session_id, ImageTag.PREVIOUS),
            current=self.get(session_id, ImageTag.CURRENT),
        )

    def delete_all(self, session_id: str) -> None:
        """Remove both images for a session. Missing files are ignored."""
        for tag in ImageTag:
            self._path(session_id, tag).unlink(missing_ok=True)
