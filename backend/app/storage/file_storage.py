"""Key-addressed file storage for export artifacts (local fs implementation)."""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import BinaryIO, TextIO

from app.core.errors import StorageKeyError

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


class LocalFileStorage:
    """Resolve relative keys such as ``exports/products/x.csv`` under a root dir.

    Writers get a temporary ``.part`` file that is renamed into place only when
    the block exits cleanly, so readers never observe a half-written artifact.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise StorageKeyError(f"Invalid file key: {key!r}")
        parts = PurePosixPath(key).parts
        if any(part in ("..", ".") for part in parts):
            raise StorageKeyError(f"File key escapes storage root: {key!r}")
        path = (self.root / Path(*parts)).resolve()
        if self.root not in path.parents:
            raise StorageKeyError(f"File key escapes storage root: {key!r}")
        return path

    @contextmanager
    def open_for_write(self, key: str, *, encoding: str = "utf-8") -> Iterator[TextIO]:
        """Yield a text handle; the artifact becomes visible on clean exit only."""
        target = self.path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f"{target.name}.{uuid.uuid4().hex}{PARTIAL_SUFFIX}")
        handle = partial.open("w", encoding=encoding, newline="")
        try:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
            handle.close()
            os.replace(partial, target)
            logger.info(f"Stored artifact {key} ({target.stat().st_size} bytes)")
        except BaseException:
            handle.close()
            partial.unlink(missing_ok=True)
            logger.warning(f"Discarded partial artifact for {key}")
            raise

    def resolve(self, key: str) -> BinaryIO:
        """Open a stored artifact for reading."""
        path = self.path_for(key)
        if not path.is_file():
            raise FileNotFoundError(f"No stored file for key {key}")
        return path.open("rb")

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def size(self, key: str) -> int:
        return self.path_for(key).stat().st_size

    def delete(self, key: str) -> None:
        """Remove an artifact; missing files are ignored."""
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete stored file {key}: {e}")
