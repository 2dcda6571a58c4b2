from fastapi import Depends, Request
from fastapi.security import APIKeyHeader, APIKeyQuery
from sqlalchemy.orm import Session

from lanvault.core.config import Settings
from lanvault.core.identity import DeviceIdentity
from lanvault.services.access import AccessGate, Principal, require_permission
from lanvault.services.files import FileService
from lanvault.services.ledger import DeviceRegistry
from lanvault.storage.object_store import ObjectStore

# API key từ header hoặc query string
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
api_key_query = APIKeyQuery(name="apiKey", auto_error=False)


def get_db(request: Request):
    """Dependency để lấy database session"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_identity(request: Request) -> DeviceIdentity:
    return request.app.state.identity


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_file_service(
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    identity: DeviceIdentity = Depends(get_identity),
    settings: Settings = Depends(get_settings),
) -> FileService:
    return FileService(db, store, identity, max_file_age=settings.MAX_FILE_AGE)


def get_device_registry(
    db: Session = Depends(get_db),
    identity: DeviceIdentity = Depends(get_identity),
) -> DeviceRegistry:
    return DeviceRegistry(db, identity)


def get_access_gate(
    db: Session = Depends(get_db),
    identity: DeviceIdentity = Depends(get_identity),
) -> AccessGate:
    return AccessGate(db, identity)


def get_current_principal(
    header_key: str = Depends(api_key_header),
    query_key: str = Depends(api_key_query),
    gate: AccessGate = Depends(get_access_gate),
) -> Principal:
    """
    Dependency để lấy principal hiện tại từ API key.
    Dùng cho các API private (device, key management, delete, cleanup).
    """
    return gate.authenticate(header_key or query_key)


def require(permission: str):
    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        return require_permission(principal, permission)

    return dependency


get_reader = require("read")
get_writer = require("write")
get_admin = require("admin")


def client_ip(request: Request):
    return request.client.host if request.client else None
