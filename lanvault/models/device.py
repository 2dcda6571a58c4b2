from sqlalchemy import Boolean, Column, DateTime, Index, String

from lanvault.core.clock import utcnow
from lanvault.db.session import Base


class Device(Base):
    __tablename__ = "devices"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    ip_address = Column(String(64), nullable=True, index=True)
    public_key = Column(String(64), nullable=True)
    fingerprint = Column(String(32), nullable=True, index=True)
    is_trusted = Column(Boolean, default=False, nullable=False)

    # Timestamps
    last_seen = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # Anonymous uploaders are recognised by (display name, source address)
        Index("idx_devices_name_ip", "name", "ip_address"),
    )

    def __repr__(self) -> str:
        return f"<Device {self.name} ({self.id}) trusted={self.is_trusted}>"
