"""File workflow: upload, download, info, delete and the expiry sweep.

Ties the object store to the ledger. An upload is all-or-nothing: the
ledger row is committed only after the ciphertext is durable, and a failed
commit removes the ciphertext again.
"""

import logging
import os
import re
import uuid
from datetime import datetime, timedelta
from typing import BinaryIO, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from lanvault.core.clock import utcnow
from lanvault.core.crypto import generate_file_key
from lanvault.core.errors import CryptoError, NotFoundError, StorageError, ValidationError
from lanvault.core.identity import DeviceIdentity
from lanvault.models.file import File
from lanvault.services.ledger import DeviceRegistry, FileLedger, clean_device_name
from lanvault.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


class FileService:
    def __init__(self, db: Session, store: ObjectStore, identity: DeviceIdentity, max_file_age: int = 0):
        self.db = db
        self.store = store
        self.files = FileLedger(db)
        self.devices = DeviceRegistry(db, identity)
        self.max_file_age = max_file_age

    def upload(self, source: Union[bytes, BinaryIO], original_name: Optional[str], *,
               mime_type: Optional[str] = None, source_ip: Optional[str] = None,
               device_id: Optional[str] = None, device_name: Optional[str] = None,
               expires_in_minutes=None, now: Optional[datetime] = None) -> File:
        # Validate everything before touching storage or the ledger
        original_name = _clean_original_name(original_name)
        if device_name is not None:
            device_name = clean_device_name(device_name, "Device name cannot be empty")
        now = now or utcnow()
        expires_at = self._resolve_expiry(expires_in_minutes, now)

        owner = None
        if device_id:
            owner = self.devices.get(device_id)
            if owner is None:
                raise ValidationError("Unknown device")

        file_id = str(uuid.uuid4())
        key = generate_file_key()
        stored = self.store.put(file_id, source, key)

        try:
            if owner is None:
                client_ip = source_ip or "unknown"
                owner = self.devices.provision_anonymous(
                    name=device_name or f"Anonymous Device ({client_ip})",
                    ip_address=client_ip,
                )
            else:
                # deviceName only names a newly provisioned anonymous device
                self.devices.touch(owner)

            record = self.files.create(
                file_id=file_id,
                stored_name=stored.ref,
                original_name=original_name,
                size=stored.size,
                mime_type=mime_type or "application/octet-stream",
                owner_device_id=owner.id,
                encryption_key=key,
                expires_at=expires_at,
                upload_time=now,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._reclaim(stored.ref)
            raise

        logger.info("Stored file %s (%d bytes) from device %s", file_id, stored.size, owner.id)
        return record

    def download(self, file_id: str, now: Optional[datetime] = None) -> Tuple[File, bytes]:
        record = self.files.require_accessible(file_id, now)
        try:
            data = self.store.get(record.stored_name, record.encryption_key)
        except CryptoError as exc:
            # Corruption or tampering; never retried
            logger.error("Decryption failed for file %s: %s", file_id, exc.message)
            raise
        self.files.increment_downloads(file_id)
        self.db.commit()
        return record, data

    def info(self, file_id: str, now: Optional[datetime] = None) -> File:
        return self.files.require_accessible(file_id, now)

    def list(self, device_id: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[File]:
        return self.files.list_active(device_id=device_id, limit=limit, offset=offset)

    def delete(self, file_id: str) -> dict:
        """Tombstone a file, then try to remove its ciphertext.

        Works for expired files too. Physical removal failure is reported,
        the tombstone stays.
        """
        record = self.files.get(file_id)
        if record is None or not self.files.mark_deleted(file_id):
            self.db.rollback()
            raise NotFoundError("File not found")
        self.db.commit()
        logger.info("File %s marked deleted", file_id)
        return {"deleted": True, "reclaimed": self._reclaim(record.stored_name)}

    def cleanup(self, now: Optional[datetime] = None) -> dict:
        """Sweep expired records: tombstone each, then reclaim its ciphertext.

        Safe to re-run and to run next to other requests; a record someone
        else already tombstoned is skipped.
        """
        expired = 0
        reclaimed = 0
        for file_id, stored_name in self.files.expired_candidates(now):
            if not self.files.mark_deleted(file_id):
                self.db.rollback()
                continue
            self.db.commit()
            expired += 1
            if self._reclaim(stored_name):
                reclaimed += 1
        if expired:
            logger.info("Cleanup: %d expired, %d reclaimed", expired, reclaimed)
        return {"expired": expired, "reclaimed": reclaimed}

    def device_stats(self, device_id: str) -> dict:
        self.devices.require(device_id)
        return self.files.device_stats(device_id)

    def _resolve_expiry(self, expires_in_minutes, now: datetime) -> Optional[datetime]:
        if expires_in_minutes is None or expires_in_minutes == "":
            if self.max_file_age > 0:
                return now + timedelta(seconds=self.max_file_age)
            return None
        try:
            minutes = int(str(expires_in_minutes).strip())
        except ValueError:
            raise ValidationError("expiresInMinutes must be a whole number") from None
        if minutes < 0:
            raise ValidationError("expiresInMinutes cannot be negative")
        try:
            return now + timedelta(minutes=minutes)
        except OverflowError:
            raise ValidationError("expiresInMinutes is too large") from None

    def _reclaim(self, stored_name: str) -> bool:
        try:
            return self.store.delete(stored_name)
        except StorageError as exc:
            logger.warning("Failed to delete %s from disk: %s", stored_name, exc.message)
            return False


def _clean_original_name(name: Optional[str]) -> str:
    if not name:
        raise ValidationError("No file uploaded")
    # Display only; strip any client-side directory part
    name = os.path.basename(name.replace("\\", "/"))
    name = re.sub(r"[\x00-\x1f\x7f]", "", name).strip()
    if not name:
        raise ValidationError("No file uploaded")
    return name[:255]
