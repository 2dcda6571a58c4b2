import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lanvault.api import auth, devices, files
from lanvault.core.clock import isoformat, utcnow
from lanvault.core.config import Settings, settings
from lanvault.core.errors import AuthError, CryptoError, LanVaultError, StorageError
from lanvault.core.identity import DeviceIdentity, get_local_ip, load_or_create_identity
from lanvault.db.session import build_engine, init_database, make_session_factory
from lanvault.schemas.common import error_response
from lanvault.services.access import AccessGate
from lanvault.services.ledger import DeviceRegistry
from lanvault.services.sweeper import ExpirySweeper
from lanvault.storage.blob import FilesystemBlobBackend
from lanvault.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _register_node(session_factory, identity: DeviceIdentity, app_settings: Settings):
    """Upsert this node's own device record and the operator key, if configured."""
    db = session_factory()
    try:
        DeviceRegistry(db, identity).register_self(get_local_ip())
        if app_settings.API_KEY:
            AccessGate(db, identity).register_operator_key(app_settings.API_KEY)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_app(app_settings: Optional[Settings] = None, identity: Optional[DeviceIdentity] = None) -> FastAPI:
    app_settings = app_settings or settings
    configure_logging(app_settings.LOG_LEVEL)

    # Ledger
    engine = build_engine(app_settings.DATABASE_URL, echo=app_settings.DB_ECHO)
    init_database(engine)
    session_factory = make_session_factory(engine)

    # Node identity is loaded once and handed to whoever needs it
    identity = identity or load_or_create_identity(app_settings.IDENTITY_PATH, app_settings.DEVICE_NAME)

    # Encrypted object store
    os.makedirs(app_settings.STORAGE_DIR, exist_ok=True)
    store = ObjectStore(
        FilesystemBlobBackend(app_settings.STORAGE_DIR),
        app_settings.STAGING_DIR,
        max_size=app_settings.MAX_FILE_SIZE,
    )
    store.purge_staging()

    _register_node(session_factory, identity, app_settings)

    app = FastAPI(
        title=app_settings.PROJECT_NAME,
        description="LAN Vault - encrypted file sharing for the local network",
        version="1.0.0",
    )
    app.state.settings = app_settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.identity = identity
    app.state.object_store = store
    app.state.sweeper = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(LanVaultError)
    async def handle_lanvault_error(request: Request, exc: LanVaultError):
        headers = None
        if isinstance(exc, AuthError):
            headers = {"WWW-Authenticate": "X-API-Key"}
        if isinstance(exc, (CryptoError, StorageError)):
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.message).model_dump(),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_response("Internal server error").model_dump())

    # Include routers
    app.include_router(files.router, prefix=f"{app_settings.API_PREFIX}/files", tags=["Files"])
    app.include_router(devices.router, prefix=f"{app_settings.API_PREFIX}/devices", tags=["Devices"])
    app.include_router(auth.router, prefix=f"{app_settings.API_PREFIX}/auth", tags=["Authentication"])

    @app.get(f"{app_settings.API_PREFIX}/health")
    def health():
        return {"status": "ok", "timestamp": isoformat(utcnow())}

    @app.on_event("startup")
    def startup_event():
        logger.info("Node %s (%s) fingerprint %s", identity.device_name, identity.device_id, identity.fingerprint)
        if app_settings.CLEANUP_INTERVAL > 0:
            sweeper = ExpirySweeper(session_factory, store, identity, app_settings.CLEANUP_INTERVAL)
            sweeper.start()
            app.state.sweeper = sweeper

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("Shutting down LAN Vault...")
        if app.state.sweeper is not None:
            app.state.sweeper.stop()
        engine.dispose()

    return app


if __name__ == "__main__":
    import uvicorn

    ssl_options = {}
    if os.path.exists(settings.SSL_CERT_FILE) and os.path.exists(settings.SSL_KEY_FILE):
        ssl_options = {"ssl_certfile": settings.SSL_CERT_FILE, "ssl_keyfile": settings.SSL_KEY_FILE}
    else:
        print("SSL certificates not found, serving plain HTTP")

    uvicorn.run(
        "lanvault.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=False,
        log_level=settings.LOG_LEVEL.lower(),
        **ssl_options,
    )
