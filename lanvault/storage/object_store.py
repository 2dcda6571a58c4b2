"""Object Store: encrypted file bytes addressed by file id.

``put`` stages plaintext in a private directory, encrypts it in memory,
persists the ciphertext and removes the staged copy on every exit path.
A failed ``put`` leaves neither staged plaintext nor ciphertext behind.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, NamedTuple, Optional, Union

from lanvault.core import crypto
from lanvault.core.errors import StorageError, ValidationError
from lanvault.storage.blob import BlobBackend

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
BLOB_SUFFIX = ".enc"


class StoredObject(NamedTuple):
    ref: str
    size: int  # plaintext bytes actually stored


class ObjectStore:
    def __init__(self, backend: BlobBackend, staging_dir, max_size: Optional[int] = None):
        self.backend = backend
        self.staging_dir = Path(staging_dir)
        self.staging_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self.max_size = max_size

    @staticmethod
    def ref_for(file_id: str) -> str:
        return f"{file_id}{BLOB_SUFFIX}"

    def put(self, file_id: str, source: Union[bytes, BinaryIO], key) -> StoredObject:
        ref = self.ref_for(file_id)
        if self.backend.exists(ref):
            raise StorageError("Stored object already exists")

        staged = None
        written = False
        try:
            if isinstance(source, (bytes, bytearray, memoryview)):
                plaintext = bytes(source)
                self._check_size(len(plaintext))
            else:
                staged = self._stage(source)
                with open(staged, "rb") as fh:
                    plaintext = fh.read()

            self.backend.write_blob(ref, crypto.encrypt(plaintext, key))
            written = True
            return StoredObject(ref=ref, size=len(plaintext))
        finally:
            if staged is not None:
                self._unstage(staged)
            if not written:
                self._remove_partial(ref)

    def get(self, ref: str, key) -> bytes:
        return crypto.decrypt(self.backend.read_blob(ref), key)

    def delete(self, ref: str) -> bool:
        """Physically remove ``ref``. Missing refs are not an error."""
        removed = self.backend.delete_blob(ref)
        if not removed:
            logger.debug("Blob %s already absent", ref)
        return removed

    def exists(self, ref: str) -> bool:
        return self.backend.exists(ref)

    def _check_size(self, size: int) -> None:
        if self.max_size is not None and size > self.max_size:
            raise ValidationError(f"File too large. Maximum {self.max_size / 1024 / 1024:.0f}MB")

    def _stage(self, source: BinaryIO) -> str:
        fd, path = tempfile.mkstemp(prefix="upload-", dir=str(self.staging_dir))
        size = 0
        try:
            with os.fdopen(fd, "wb") as out:
                while True:
                    chunk = source.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    self._check_size(size)
                    out.write(chunk)
        except OSError as exc:
            self._unstage(path)
            raise StorageError("Failed to stage upload") from exc
        except ValidationError:
            self._unstage(path)
            raise
        return path

    def _unstage(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Could not remove staged plaintext %s: %s", path, exc)

    def _remove_partial(self, ref: str) -> None:
        try:
            self.backend.delete_blob(ref)
        except StorageError as exc:
            logger.error("Could not remove partial blob %s: %s", ref, exc)

    def purge_staging(self) -> int:
        """Drop plaintext left behind by a crashed process. Run at startup only."""
        count = 0
        for entry in self.staging_dir.iterdir():
            if entry.is_file():
                entry.unlink()
                count += 1
            elif entry.is_dir():
                shutil.rmtree(entry)
                count += 1
        if count:
            logger.warning("Purged %d stale staged upload(s)", count)
        return count
