from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lanvault.api.deps import get_access_gate, get_admin, get_db, get_writer
from lanvault.core.clock import isoformat
from lanvault.models.device import Device
from lanvault.schemas.auth import (
    ApiKeyCreate,
    ApiKeyIssued,
    ApiKeyOut,
    ApiKeyValidate,
    ApiKeyValidation,
    sorted_permissions,
)
from lanvault.schemas.common import StandardResponse
from lanvault.services.access import AccessGate, Principal

router = APIRouter()


def _issued(record, plaintext: str) -> ApiKeyIssued:
    return ApiKeyIssued(
        api_key=plaintext,
        key_id=record.id,
        device_id=record.device_id,
        permissions=sorted_permissions(record.permission_set),
        expires_at=isoformat(record.expires_at),
    )


@router.post("/bootstrap", response_model=StandardResponse[ApiKeyIssued])
def bootstrap(
    gate: AccessGate = Depends(get_access_gate),
    db: Session = Depends(get_db),
):
    """
    Create the first admin API key.
    Only works while no active key exists.
    """
    record, plaintext = gate.bootstrap()
    db.commit()
    return StandardResponse(
        success=True,
        message="First admin API key created successfully. Save this key securely!",
        data=_issued(record, plaintext),
    )


@router.post("/validate", response_model=StandardResponse[ApiKeyValidation])
def validate_api_key(
    payload: ApiKeyValidate,
    gate: AccessGate = Depends(get_access_gate),
):
    principal = gate.authenticate(payload.api_key)
    return StandardResponse(
        success=True,
        message="API key is valid",
        data=ApiKeyValidation(
            valid=True,
            key_id=principal.key_id,
            device_id=principal.device_id,
            permissions=sorted_permissions(principal.permissions),
        ),
    )


@router.post("/api-key", response_model=StandardResponse[ApiKeyIssued])
def generate_api_key(
    payload: ApiKeyCreate,
    gate: AccessGate = Depends(get_access_gate),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_writer),
):
    record, plaintext = gate.issue_key(
        permissions=payload.permissions,
        device_id=payload.device_id,
        expires_in_hours=payload.expires_in_hours,
        granted_by=principal,
    )
    db.commit()
    return StandardResponse(success=True, message="API key created", data=_issued(record, plaintext))


@router.get("/api-keys", response_model=StandardResponse[List[ApiKeyOut]])
def list_api_keys(
    gate: AccessGate = Depends(get_access_gate),
    db: Session = Depends(get_db),
    _: Principal = Depends(get_admin),
):
    keys = gate.list_active()
    device_ids = {k.device_id for k in keys if k.device_id}
    names = {}
    if device_ids:
        names = dict(db.query(Device.id, Device.name).filter(Device.id.in_(device_ids)).all())
    return StandardResponse(
        success=True,
        message=f"Found {len(keys)} active key(s)",
        data=[ApiKeyOut.from_record(k, names.get(k.device_id)) for k in keys],
    )


@router.delete("/api-keys/{key_id}", response_model=StandardResponse[ApiKeyOut])
def revoke_api_key(
    key_id: str,
    gate: AccessGate = Depends(get_access_gate),
    db: Session = Depends(get_db),
    _: Principal = Depends(get_admin),
):
    record = gate.revoke(key_id)
    db.commit()
    return StandardResponse(success=True, message="API key revoked", data=ApiKeyOut.from_record(record))
