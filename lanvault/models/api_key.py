from sqlalchemy import Boolean, Column, DateTime, String

from lanvault.core.clock import utcnow
from lanvault.core.security import parse_permissions
from lanvault.db.session import Base


class ApiKey(Base):
    """Hashed API key. The presented key is never stored."""

    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True)
    key_hash = Column(String(128), nullable=False, unique=True, index=True)
    device_id = Column(String(36), nullable=True, index=True)  # Identity the key authenticates as
    permissions = Column(String(64), nullable=False, default="read,write")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    # Revocation flips this flag; rows are kept as an audit trail
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    @property
    def permission_set(self):
        return parse_permissions(self.permissions)

    def is_expired(self, now=None) -> bool:
        now = now or utcnow()
        return self.expires_at is not None and now >= self.expires_at

    def __repr__(self) -> str:
        return f"<ApiKey {self.id} active={self.is_active}>"
