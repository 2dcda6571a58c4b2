from typing import List, Optional

from pydantic import Field

from lanvault.core.clock import isoformat
from lanvault.schemas.common import CamelModel


class DeviceRegister(CamelModel):
    device_name: str = Field(..., max_length=255)
    public_key: str = Field(..., max_length=64)
    ip_address: Optional[str] = Field(None, max_length=64)
    device_id: Optional[str] = Field(None, max_length=36)


class DeviceRename(CamelModel):
    name: str = Field(..., max_length=255)


class DeviceOut(CamelModel):
    id: str
    name: str
    ip_address: Optional[str] = None
    fingerprint: Optional[str] = None
    last_seen: Optional[str] = None
    is_trusted: bool
    created_at: Optional[str] = None
    is_self: bool = False

    @classmethod
    def from_record(cls, device, self_id: str) -> "DeviceOut":
        return cls(
            id=device.id,
            name=device.name,
            ip_address=device.ip_address,
            fingerprint=device.fingerprint,
            last_seen=isoformat(device.last_seen),
            is_trusted=device.is_trusted,
            created_at=isoformat(device.created_at),
            # Derived, never stored
            is_self=device.id == self_id,
        )


class DeviceRegisterOut(CamelModel):
    device_id: str
    created: bool
    is_trusted: bool


class NodeInfo(CamelModel):
    id: str
    name: str
    public_key: str
    fingerprint: str
    ip_address: Optional[str] = None
    services: List[str] = ["secure-file-share"]
    version: str = "1.0.0"


class DeviceStats(CamelModel):
    device_id: str
    total_files: int
    total_size: int
    total_downloads: int
    last_upload: Optional[str] = None
    active_files: int
