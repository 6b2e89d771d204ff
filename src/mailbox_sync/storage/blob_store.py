"""File-backed blob store for message HTML bodies."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def html_key(user_id: str, message_id: str) -> str:
    """Blob key for a message's HTML body."""
    return f"emails/{user_id}/{message_id}.html"


class FileBlobStore:
    """Store blobs as files under a root directory, addressed by relative key."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root.resolve()):
            raise ValueError(f"Blob key escapes store root: {key}")
        return path

    def put(self, key: str, content: str) -> str:
        """Write ``content`` under ``key`` and return the key."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.debug("Stored blob: %s", path)
        return key

    def get(self, key: str) -> str | None:
        """Content stored under ``key``, or None when absent."""
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")
