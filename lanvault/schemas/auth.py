from typing import List, Optional, Union

from pydantic import Field

from lanvault.core.clock import isoformat
from lanvault.core.security import PERMISSIONS
from lanvault.schemas.common import CamelModel


class ApiKeyCreate(CamelModel):
    device_id: Optional[str] = None
    permissions: Optional[Union[str, List[str]]] = None
    expires_in_hours: Optional[float] = Field(None, gt=0)


class ApiKeyValidate(CamelModel):
    api_key: str


# The only response that ever carries a key in plaintext
class ApiKeyIssued(CamelModel):
    api_key: str
    key_id: str
    device_id: Optional[str] = None
    permissions: List[str]
    expires_at: Optional[str] = None


class ApiKeyValidation(CamelModel):
    valid: bool
    key_id: str
    device_id: Optional[str] = None
    permissions: List[str]


class ApiKeyOut(CamelModel):
    id: str
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    permissions: List[str]
    created_at: Optional[str] = None
    expires_at: Optional[str] = None
    is_active: bool

    @classmethod
    def from_record(cls, record, device_name: Optional[str] = None) -> "ApiKeyOut":
        return cls(
            id=record.id,
            device_id=record.device_id,
            device_name=device_name,
            permissions=sorted_permissions(record.permission_set),
            created_at=isoformat(record.created_at),
            expires_at=isoformat(record.expires_at),
            is_active=record.is_active,
        )


def sorted_permissions(perms) -> List[str]:
    return [p for p in PERMISSIONS if p in perms]
