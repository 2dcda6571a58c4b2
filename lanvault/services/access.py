"""Access control gate: API-key authentication and permission checks.

Keys are looked up by their one-way hash. Revocation flips ``is_active``
and keeps the row.
"""

import logging
import uuid
from datetime import timedelta
from typing import FrozenSet, List, NamedTuple, Optional, Tuple

from sqlalchemy.orm import Session

from lanvault.core.clock import utcnow
from lanvault.core.errors import AuthError, AuthzError, NotFoundError, ValidationError
from lanvault.core.identity import DeviceIdentity
from lanvault.core.security import (
    format_permissions,
    generate_api_key,
    has_permission,
    hash_secret,
    parse_permissions,
    verify_secret,
)
from lanvault.models.api_key import ApiKey
from lanvault.models.device import Device

logger = logging.getLogger(__name__)

ALL_PERMISSIONS = "read,write,admin"


class Principal(NamedTuple):
    key_id: str
    device_id: Optional[str]
    permissions: FrozenSet[str]

    def can(self, permission: str) -> bool:
        return has_permission(self.permissions, permission)


def require_permission(principal: Principal, permission: str) -> Principal:
    if not principal.can(permission):
        raise AuthzError(f"Permission '{permission}' required")
    return principal


class AccessGate:
    def __init__(self, db: Session, identity: DeviceIdentity):
        self.db = db
        self.identity = identity

    def authenticate(self, presented: Optional[str], now=None) -> Principal:
        if not presented:
            raise AuthError("API key required")
        key_hash = hash_secret(presented)
        record = (
            self.db.query(ApiKey)
            .filter(ApiKey.key_hash == key_hash, ApiKey.is_active.is_(True))
            .first()
        )
        if record is None or not verify_secret(presented, record.key_hash):
            raise AuthError("Invalid API key")
        if record.is_expired(now):
            raise AuthError("API key expired")
        return Principal(key_id=record.id, device_id=record.device_id, permissions=record.permission_set)

    def issue_key(self, permissions=None, device_id: Optional[str] = None,
                  expires_in_hours=None, granted_by: Optional[Principal] = None) -> Tuple[ApiKey, str]:
        """Create a key and return ``(record, plaintext)``.

        The plaintext is returned exactly once; only its hash is stored.
        """
        perms = parse_permissions(permissions)
        if granted_by is not None:
            missing = [p for p in perms if not granted_by.can(p)]
            if missing:
                raise AuthzError("Cannot grant permissions you do not hold")

        if device_id:
            if self.db.get(Device, device_id) is None:
                raise NotFoundError("Device not found")
        else:
            device_id = self.identity.device_id

        expires_at = None
        if expires_in_hours is not None:
            try:
                hours = float(expires_in_hours)
            except (TypeError, ValueError):
                raise ValidationError("expiresInHours must be a number") from None
            if not hours > 0:
                raise ValidationError("expiresInHours must be positive")
            try:
                expires_at = utcnow() + timedelta(hours=hours)
            except (OverflowError, ValueError):
                raise ValidationError("expiresInHours is too large") from None

        plaintext = generate_api_key()
        record = ApiKey(
            id=str(uuid.uuid4()),
            key_hash=hash_secret(plaintext),
            device_id=device_id,
            permissions=format_permissions(perms),
            expires_at=expires_at,
            is_active=True,
        )
        self.db.add(record)
        self.db.flush()
        logger.info("API key %s issued for device %s (%s)", record.id, device_id, record.permissions)
        return record, plaintext

    def active_key_count(self) -> int:
        return self.db.query(ApiKey).filter(ApiKey.is_active.is_(True)).count()

    def bootstrap(self) -> Tuple[ApiKey, str]:
        """Issue the first admin key. Only allowed while no active key exists."""
        if self.active_key_count() > 0:
            raise ValidationError(
                "Admin API keys already exist. Use the admin interface to create more keys."
            )
        return self.issue_key(ALL_PERMISSIONS)

    def register_operator_key(self, presented: str) -> bool:
        """Register a configured key by hash if it is not known yet."""
        key_hash = hash_secret(presented)
        if self.db.query(ApiKey).filter(ApiKey.key_hash == key_hash).first() is not None:
            return False
        record = ApiKey(
            id=str(uuid.uuid4()),
            key_hash=key_hash,
            device_id=self.identity.device_id,
            permissions="read,write",
            is_active=True,
        )
        self.db.add(record)
        self.db.flush()
        logger.info("Initial API key registered (%s)", record.id)
        return True

    def revoke(self, key_id: str) -> ApiKey:
        updated = (
            self.db.query(ApiKey)
            .filter(ApiKey.id == key_id, ApiKey.is_active.is_(True))
            .update({ApiKey.is_active: False}, synchronize_session=False)
        )
        if updated != 1:
            raise NotFoundError("API key not found")
        logger.info("API key %s revoked", key_id)
        return self.db.get(ApiKey, key_id, populate_existing=True)

    def list_active(self) -> List[ApiKey]:
        return (
            self.db.query(ApiKey)
            .filter(ApiKey.is_active.is_(True))
            .order_by(ApiKey.created_at.desc())
            .all()
        )
