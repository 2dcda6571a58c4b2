"""Metadata & lifecycle ledger.

The only place that answers "is this file / device usable right now".
Methods work inside the caller's session and never commit; the calling
service owns the transaction. Counter increments and tombstones are single
UPDATE statements so concurrent requests never lose a write.
"""

import logging
import re
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from lanvault.core.clock import utcnow
from lanvault.core.crypto import fingerprint, load_public_key
from lanvault.core.errors import ExpiredError, KeyFormatError, NotFoundError, ValidationError
from lanvault.core.identity import DeviceIdentity
from lanvault.models.api_key import ApiKey
from lanvault.models.device import Device
from lanvault.models.file import File

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class FileLedger:
    def __init__(self, db: Session):
        self.db = db

    def create(self, *, file_id: str, stored_name: str, original_name: str, size: int,
               mime_type: Optional[str], owner_device_id: Optional[str], encryption_key: str,
               expires_at: Optional[datetime], upload_time: Optional[datetime] = None) -> File:
        record = File(
            id=file_id,
            stored_name=stored_name,
            original_name=original_name,
            size=size,
            mime_type=mime_type,
            owner_device_id=owner_device_id,
            encryption_key=encryption_key,
            upload_time=upload_time or utcnow(),
            expires_at=expires_at,
            download_count=0,
            is_deleted=False,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def get(self, file_id: str) -> Optional[File]:
        """Fetch a record in any state, bypassing the session's cached copy."""
        return self.db.get(File, file_id, populate_existing=True)

    def require_accessible(self, file_id: str, now: Optional[datetime] = None) -> File:
        """Return an active record or raise NotFoundError / ExpiredError.

        Deleted and unknown ids are reported identically.
        """
        record = self.get(file_id)
        if record is None or record.is_deleted:
            raise NotFoundError("File not found")
        if record.is_expired(now):
            raise ExpiredError("File expired")
        return record

    def list_active(self, device_id: Optional[str] = None, limit: int = 50, offset: int = 0,
                    now: Optional[datetime] = None) -> List[File]:
        now = now or utcnow()
        query = self.db.query(File).filter(
            File.is_deleted.is_(False),
            or_(File.expires_at.is_(None), File.expires_at > now),
        )
        if device_id:
            query = query.filter(File.owner_device_id == device_id)
        return query.order_by(File.upload_time.desc()).offset(offset).limit(limit).all()

    def increment_downloads(self, file_id: str) -> bool:
        updated = (
            self.db.query(File)
            .filter(File.id == file_id)
            .update({File.download_count: File.download_count + 1}, synchronize_session=False)
        )
        return updated == 1

    def mark_deleted(self, file_id: str) -> bool:
        """Set the tombstone. False when the record is unknown or already deleted."""
        updated = (
            self.db.query(File)
            .filter(File.id == file_id, File.is_deleted.is_(False))
            .update({File.is_deleted: True}, synchronize_session=False)
        )
        return updated == 1

    def expired_candidates(self, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
        now = now or utcnow()
        rows = (
            self.db.query(File.id, File.stored_name)
            .filter(
                File.expires_at.isnot(None),
                File.expires_at <= now,
                File.is_deleted.is_(False),
            )
            .all()
        )
        return [(row.id, row.stored_name) for row in rows]

    def device_stats(self, device_id: str, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        totals = (
            self.db.query(
                func.count(File.id),
                func.coalesce(func.sum(File.size), 0),
                func.coalesce(func.sum(File.download_count), 0),
                func.max(File.upload_time),
            )
            .filter(File.owner_device_id == device_id, File.is_deleted.is_(False))
            .one()
        )
        active = (
            self.db.query(func.count(File.id))
            .filter(
                File.owner_device_id == device_id,
                File.is_deleted.is_(False),
                or_(File.expires_at.is_(None), File.expires_at > now),
            )
            .scalar()
        )
        return {
            "total_files": totals[0] or 0,
            "total_size": int(totals[1] or 0),
            "total_downloads": int(totals[2] or 0),
            "last_upload": totals[3],
            "active_files": active or 0,
        }


class DeviceRegistry:
    """Device records and their trust state.

    Sightings refresh address, fingerprint and last_seen but never touch
    ``is_trusted``; only :meth:`set_trusted` changes trust.
    """

    def __init__(self, db: Session, identity: DeviceIdentity):
        self.db = db
        self.identity = identity

    def is_self(self, device_id: Optional[str]) -> bool:
        return device_id is not None and device_id == self.identity.device_id

    def get(self, device_id: str) -> Optional[Device]:
        return self.db.get(Device, device_id)

    def require(self, device_id: str) -> Device:
        device = self.get(device_id)
        if device is None:
            raise NotFoundError("Device not found")
        return device

    def list(self) -> List[Device]:
        return self.db.query(Device).order_by(Device.last_seen.desc()).all()

    def register_self(self, ip_address: Optional[str]) -> Device:
        ident = self.identity
        device = self.get(ident.device_id)
        if device is None:
            device = Device(id=ident.device_id, is_trusted=True)
            self.db.add(device)
        device.name = ident.device_name
        device.ip_address = ip_address
        device.public_key = ident.public_key
        device.fingerprint = ident.fingerprint
        device.last_seen = utcnow()
        self.db.flush()
        logger.info("Device registered: %s at %s", ident.device_name, ip_address)
        return device

    def record_sighting(self, *, name: str, public_key: str, ip_address: Optional[str],
                        device_id: Optional[str] = None) -> Tuple[Device, bool]:
        """Create or refresh a peer that announced itself with a public key.

        Returns ``(device, created)``. New peers start untrusted.
        """
        name = clean_device_name(name)
        if not public_key:
            raise ValidationError("Device name and public key required")
        try:
            load_public_key(public_key)
        except KeyFormatError:
            raise ValidationError("Invalid public key") from None
        fp = fingerprint(public_key)
        if self.is_self(device_id) or fp == self.identity.fingerprint:
            raise ValidationError("Cannot register this node's own identity")

        device = self.get(device_id) if device_id else None
        if device is None:
            device = self.db.query(Device).filter(Device.fingerprint == fp).first()

        created = device is None
        if created:
            device = Device(id=device_id or str(uuid.uuid4()), is_trusted=False, public_key=public_key)
            self.db.add(device)
        elif device.public_key != public_key:
            # Trust is bound to the key; a different key is a different device
            raise ValidationError("Device id is bound to a different public key")

        device.name = name
        device.ip_address = ip_address
        device.fingerprint = fp
        device.last_seen = utcnow()
        self.db.flush()
        logger.info("%s device: %s at %s", "Discovered" if created else "Re-sighted", name, ip_address)
        return device, created

    def provision_anonymous(self, *, name: str, ip_address: Optional[str]) -> Device:
        """Find or create the device behind an upload that named no identity.

        Anonymous devices are trusted on creation so their uploads list
        immediately. This is looser than :meth:`record_sighting`.
        """
        device = (
            self.db.query(Device)
            .filter(Device.name == name, Device.ip_address == ip_address)
            .first()
        )
        if device is None:
            device = Device(id=str(uuid.uuid4()), name=name, ip_address=ip_address, is_trusted=True)
            self.db.add(device)
            logger.info("Provisioned anonymous device %s (%s)", name, ip_address)
        device.last_seen = utcnow()
        self.db.flush()
        return device

    def touch(self, device: Device) -> Device:
        """Refresh last_seen. Names change only through :meth:`rename`."""
        device.last_seen = utcnow()
        self.db.flush()
        return device

    def rename(self, device_id: str, name: str) -> Device:
        name = clean_device_name(name, "Valid device name required")
        device = self.require(device_id)
        device.name = name
        self.db.flush()
        return device

    def set_trusted(self, device_id: str, trusted: bool) -> Device:
        device = self.require(device_id)
        device.is_trusted = trusted
        self.db.flush()
        logger.info("Device %s %s", device_id, "trusted" if trusted else "untrusted")
        return device

    def delete(self, device_id: str) -> None:
        if self.is_self(device_id):
            raise ValidationError("Cannot delete own device")
        device = self.require(device_id)
        # Keys bound to the device stop authenticating with it
        revoked = (
            self.db.query(ApiKey)
            .filter(ApiKey.device_id == device_id, ApiKey.is_active.is_(True))
            .update({ApiKey.is_active: False}, synchronize_session=False)
        )
        self.db.delete(device)
        self.db.flush()
        logger.info("Device %s removed, %d API key(s) revoked", device_id, revoked)


def clean_device_name(name: Optional[str], message: str = "Device name and public key required") -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(message)
    name = name.strip()
    if _CONTROL_CHARS.search(name):
        raise ValidationError("Device name contains control characters")
    if len(name) > 255:
        raise ValidationError("Device name is too long")
    return name
