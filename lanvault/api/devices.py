from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lanvault.api.deps import (
    client_ip,
    get_db,
    get_device_registry,
    get_file_service,
    get_identity,
    get_reader,
    get_writer,
)
from lanvault.core.clock import isoformat
from lanvault.core.identity import DeviceIdentity, get_local_ip
from lanvault.schemas.common import StandardResponse
from lanvault.schemas.device import (
    DeviceOut,
    DeviceRegister,
    DeviceRegisterOut,
    DeviceRename,
    DeviceStats,
    NodeInfo,
)
from lanvault.services.access import Principal
from lanvault.services.files import FileService
from lanvault.services.ledger import DeviceRegistry

router = APIRouter()


def _node_info(identity: DeviceIdentity) -> NodeInfo:
    return NodeInfo(
        id=identity.device_id,
        name=identity.device_name,
        public_key=identity.public_key,
        fingerprint=identity.fingerprint,
        ip_address=get_local_ip(),
    )


@router.get("", response_model=StandardResponse[List[DeviceOut]])
def list_devices(
    registry: DeviceRegistry = Depends(get_device_registry),
    _: Principal = Depends(get_reader),
):
    devices = registry.list()
    self_id = registry.identity.device_id
    return StandardResponse(
        success=True,
        message=f"Found {len(devices)} device(s)",
        data=[DeviceOut.from_record(d, self_id) for d in devices],
    )


@router.get("/discover", response_model=StandardResponse[NodeInfo])
def discover(identity: DeviceIdentity = Depends(get_identity)):
    """Public discovery document for peers on the LAN."""
    return StandardResponse(success=True, message="Node info", data=_node_info(identity))


@router.get("/me", response_model=StandardResponse[NodeInfo])
def get_self(
    identity: DeviceIdentity = Depends(get_identity),
    _: Principal = Depends(get_reader),
):
    return StandardResponse(success=True, message="Node info", data=_node_info(identity))


@router.post("/register", response_model=StandardResponse[DeviceRegisterOut])
def register_device(
    payload: DeviceRegister,
    request: Request,
    registry: DeviceRegistry = Depends(get_device_registry),
    db: Session = Depends(get_db),
):
    """
    Register (or re-register) an external device.
    New devices start untrusted; trust must be established manually.
    """
    device, created = registry.record_sighting(
        name=payload.device_name,
        public_key=payload.public_key,
        ip_address=payload.ip_address or client_ip(request),
        device_id=payload.device_id,
    )
    db.commit()
    message = "Device registered. Trust must be established manually." if created else "Device updated"
    return StandardResponse(
        success=True,
        message=message,
        data=DeviceRegisterOut(device_id=device.id, created=created, is_trusted=device.is_trusted),
    )


@router.get("/{device_id}", response_model=StandardResponse[DeviceOut])
def get_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_device_registry),
    _: Principal = Depends(get_reader),
):
    device = registry.require(device_id)
    return StandardResponse(
        success=True,
        message="Device info",
        data=DeviceOut.from_record(device, registry.identity.device_id),
    )


@router.put("/{device_id}", response_model=StandardResponse[DeviceOut])
def rename_device(
    device_id: str,
    payload: DeviceRename,
    registry: DeviceRegistry = Depends(get_device_registry),
    db: Session = Depends(get_db),
    _: Principal = Depends(get_writer),
):
    device = registry.rename(device_id, payload.name)
    db.commit()
    return StandardResponse(
        success=True,
        message="Device renamed",
        data=DeviceOut.from_record(device, registry.identity.device_id),
    )


@router.post("/{device_id}/trust", response_model=StandardResponse[DeviceOut])
def trust_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_device_registry),
    db: Session = Depends(get_db),
    _: Principal = Depends(get_writer),
):
    device = registry.set_trusted(device_id, True)
    db.commit()
    return StandardResponse(
        success=True,
        message="Device trusted",
        data=DeviceOut.from_record(device, registry.identity.device_id),
    )


@router.post("/{device_id}/untrust", response_model=StandardResponse[DeviceOut])
def untrust_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_device_registry),
    db: Session = Depends(get_db),
    _: Principal = Depends(get_writer),
):
    device = registry.set_trusted(device_id, False)
    db.commit()
    return StandardResponse(
        success=True,
        message="Device untrusted",
        data=DeviceOut.from_record(device, registry.identity.device_id),
    )


@router.delete("/{device_id}", response_model=StandardResponse)
def delete_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_device_registry),
    db: Session = Depends(get_db),
    _: Principal = Depends(get_writer),
):
    registry.delete(device_id)
    db.commit()
    return StandardResponse(success=True, message="Device removed", data=None)


@router.get("/{device_id}/stats", response_model=StandardResponse[DeviceStats])
def device_stats(
    device_id: str,
    service: FileService = Depends(get_file_service),
    _: Principal = Depends(get_reader),
):
    stats = service.device_stats(device_id)
    return StandardResponse(
        success=True,
        message="Device statistics",
        data=DeviceStats(
            device_id=device_id,
            total_files=stats["total_files"],
            total_size=stats["total_size"],
            total_downloads=stats["total_downloads"],
            last_upload=isoformat(stats["last_upload"]),
            active_files=stats["active_files"],
        ),
    )
