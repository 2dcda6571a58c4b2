from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Integer, String
from sqlalchemy.orm import relationship, validates

from lanvault.core.clock import utcnow
from lanvault.db.session import Base


class File(Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True)
    stored_name = Column(String(255), nullable=False, unique=True)  # Ciphertext blob name, derived from id
    original_name = Column(String(255), nullable=False, index=True)  # Tên gốc user upload
    size = Column(BigInteger, nullable=False)  # Plaintext size in bytes
    mime_type = Column(String(255), nullable=True)

    # Plain column, no FK: removing a device never touches its files
    owner_device_id = Column(String(36), nullable=True, index=True)

    # Base64 AES-256 key, one per file. Never leaves the server.
    encryption_key = Column(String(64), nullable=False)

    # Lifecycle
    upload_time = Column(DateTime, default=utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    download_count = Column(Integer, default=0, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)

    owner = relationship(
        "Device",
        primaryjoin="foreign(File.owner_device_id) == Device.id",
        viewonly=True,
        lazy="joined",
    )

    __table_args__ = (
        Index("idx_files_sweep", "is_deleted", "expires_at"),
    )

    @validates("is_deleted")
    def _keep_tombstone(self, _key, value):
        # A tombstone is final; clearing it is a no-op
        if self.is_deleted:
            return True
        return bool(value)

    def is_expired(self, now=None) -> bool:
        now = now or utcnow()
        return self.expires_at is not None and now >= self.expires_at

    def __repr__(self) -> str:
        return f"<File {self.id} deleted={self.is_deleted}>"
