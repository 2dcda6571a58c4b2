"""Blob backends: where ciphertext bytes physically live.

The Object Store only talks to the :class:`BlobBackend` interface. The
filesystem backend writes through a temporary sibling file and an atomic
rename, so a reader sees either the complete blob or nothing.
"""

import errno
import logging
import os
import tempfile
from pathlib import Path

from lanvault.core.errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


class BlobBackend:
    def write_blob(self, name: str, data: bytes) -> None:
        raise NotImplementedError

    def read_blob(self, name: str) -> bytes:
        raise NotImplementedError

    def delete_blob(self, name: str) -> bool:
        """Remove ``name``; return False when it did not exist."""
        raise NotImplementedError

    def exists(self, name: str) -> bool:
        raise NotImplementedError


class FilesystemBlobBackend(BlobBackend):
    def __init__(self, root):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        # Blob names are generated, never user supplied; still refuse anything path-like
        if not name or name in (".", "..") or os.path.basename(name) != name or name.startswith("."):
            raise ValidationError("Invalid blob name")
        return self.root / name

    def write_blob(self, name: str, data: bytes) -> None:
        target = self._path(name)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{name}.", suffix=PARTIAL_SUFFIX, dir=str(self.root))
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, target)
        except OSError as exc:
            logger.error("Failed to write blob %s: %s", name, exc.strerror or exc)
            raise StorageError("Failed to store file") from exc
        finally:
            # Still present only if the rename never happened
            if os.path.exists(tmp_path):
                self._discard(tmp_path)

    def read_blob(self, name: str) -> bytes:
        path = self._path(name)
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError as exc:
            raise NotFoundError("File not found on disk") from exc
        except OSError as exc:
            logger.error("Failed to read blob %s: %s", name, exc.strerror or exc)
            raise StorageError("Failed to read file") from exc

    def delete_blob(self, name: str) -> bool:
        path = self._path(name)
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError("Failed to delete file") from exc

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def _discard(self, tmp_path: str) -> None:
        try:
            os.remove(tmp_path)
        except OSError as exc:
            if exc.errno != errno.ENOENT:
                logger.warning("Could not remove partial blob %s: %s", tmp_path, exc)
