import pytest
from fastapi.testclient import TestClient

from lanvault.core.config import Settings
from lanvault.core.identity import DeviceIdentity
from lanvault.db.session import build_engine, init_database, make_session_factory
from lanvault.main import create_app
from lanvault.services.files import FileService
from lanvault.services.ledger import DeviceRegistry
from lanvault.storage.blob import FilesystemBlobBackend
from lanvault.storage.object_store import ObjectStore


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path at a per-test directory."""
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'ledger.db'}",
        DATA_DIR=str(tmp_path / "data"),
        IDENTITY_PATH=str(tmp_path / "data" / "device-identity.json"),
        STORAGE_DIR=str(tmp_path / "uploads"),
        STAGING_DIR=str(tmp_path / "uploads" / ".staging"),
        DEVICE_NAME="test-node",
        MAX_FILE_SIZE=1024 * 1024,
        MAX_FILE_AGE=0,
        CLEANUP_INTERVAL=0,
        API_KEY="",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def identity():
    return DeviceIdentity.generate("test-node")


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.DATABASE_URL)
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(settings):
    return ObjectStore(
        FilesystemBlobBackend(settings.STORAGE_DIR),
        settings.STAGING_DIR,
        max_size=settings.MAX_FILE_SIZE,
    )


@pytest.fixture
def self_device(db, identity):
    device = DeviceRegistry(db, identity).register_self("127.0.0.1")
    db.commit()
    return device


@pytest.fixture
def service(db, store, identity, self_device):
    return FileService(db, store, identity)


@pytest.fixture
def app(settings, identity):
    return create_app(settings, identity=identity)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_key(client):
    response = client.post("/api/auth/bootstrap")
    assert response.status_code == 200
    return response.json()["data"]["apiKey"]


def auth(key):
    return {"X-API-Key": key}
