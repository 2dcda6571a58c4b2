from typing import Optional

from lanvault.core.clock import isoformat
from lanvault.schemas.common import CamelModel


# Public view of a File Record. encryption_key and stored_name never leave the server.
class FileOut(CamelModel):
    id: str
    filename: str           # Tên gốc user upload
    size: int               # Plaintext size (bytes)
    mime_type: Optional[str] = None
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    device_ip: Optional[str] = None
    upload_time: str
    expires_at: Optional[str] = None
    download_count: int

    @classmethod
    def from_record(cls, record) -> "FileOut":
        owner = record.owner
        return cls(
            id=record.id,
            filename=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            device_id=record.owner_device_id,
            device_name=owner.name if owner is not None else None,
            device_ip=owner.ip_address if owner is not None else None,
            upload_time=isoformat(record.upload_time),
            expires_at=isoformat(record.expires_at),
            download_count=record.download_count,
        )


# Schema trả về khi upload thành công
class FileUploadOut(CamelModel):
    file_id: str
    filename: str
    size: int
    mime_type: Optional[str] = None
    device_id: Optional[str] = None
    expires_at: Optional[str] = None
    upload_time: str

    @classmethod
    def from_record(cls, record) -> "FileUploadOut":
        return cls(
            file_id=record.id,
            filename=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            device_id=record.owner_device_id,
            expires_at=isoformat(record.expires_at),
            upload_time=isoformat(record.upload_time),
        )


class FileDeleteOut(CamelModel):
    deleted: bool
    reclaimed: bool


class CleanupOut(CamelModel):
    expired_files: int
    cleaned_files: int
