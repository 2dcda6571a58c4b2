import sys

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from lanvault.core.config import Settings
from lanvault.core.errors import ValidationError
from lanvault.core.identity import get_local_ip, load_or_create_identity
from lanvault.db.session import build_engine, init_database, make_session_factory
from lanvault.services.access import AccessGate
from lanvault.services.ledger import DeviceRegistry

settings = Settings()


def check_database_connection(engine):
    """Kiểm tra kết nối Database (SQLite hoặc PostgreSQL/MySQL)"""
    if settings.is_sqlite:
        print("Using SQLite database")
        print(f"Database file: {settings.DATABASE_URL.replace('sqlite:///', '')}")
        return True
    try:
        with engine.connect():
            pass
        print(f"Connected to {engine.url.get_backend_name()} at {engine.url.host}")
        return True
    except SQLAlchemyError as e:
        print(f"Database connection failed: {e}")
        print("\nPlease check DATABASE_URL and that the server is running")
        return False


def create_tables(engine):
    """Tạo tất cả tables"""
    print("\n Creating database tables...")
    try:
        init_database(engine)
    except SQLAlchemyError as e:
        print(f" Error creating tables: {e}")
        sys.exit(1)
    tables = inspect(engine).get_table_names()
    print(f" Tables: {', '.join(tables)}")


def bootstrap_admin_key(session_factory, identity):
    """Register this node and print the first admin API key (shown once)."""
    db = session_factory()
    try:
        DeviceRegistry(db, identity).register_self(get_local_ip())
        gate = AccessGate(db, identity)
        try:
            record, plaintext = gate.bootstrap()
        except ValidationError:
            db.commit()
            print("\n  Active API keys already exist, no bootstrap key created")
            return
        db.commit()
        print("\n Admin API key created. Save it now, it is not stored in plaintext:")
        print(f"   Key ID:  {record.id}")
        print(f"   API key: {plaintext}")
    except SQLAlchemyError as e:
        print(f"\n Error creating admin key: {e}")
        db.rollback()
    finally:
        db.close()


def show_node_info(identity):
    print("\n" + "=" * 60)
    print(" Node Information")
    print("=" * 60)
    print(f"Device:      {identity.device_name} ({identity.device_id})")
    print(f"Fingerprint: {identity.fingerprint}")
    print(f"LAN IP:      {get_local_ip()}")
    print(f"Storage:     {settings.STORAGE_DIR}")


if __name__ == "__main__":
    print("\n" + "=" * 60)
    print(" Initializing LAN Vault")
    print("=" * 60)

    engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

    # Bước 1: Kiểm tra database connection
    if not check_database_connection(engine):
        print("\n Cannot connect to database. Please check your configuration.")
        sys.exit(1)

    # Bước 2: Tạo tables
    create_tables(engine)

    # Bước 3: Node identity + admin key
    identity = load_or_create_identity(settings.IDENTITY_PATH, settings.DEVICE_NAME)
    bootstrap_admin_key(make_session_factory(engine), identity)

    show_node_info(identity)

    print("\n" + "=" * 60)
    print("Initialization completed!")
    print("=" * 60)
    print("\nNext steps:")
    print("1. Install: pip install -e .")
    print("2. Start server: python -m lanvault.main")
    print(f"3. API Docs: http://localhost:{settings.PORT}/docs")
    print("\n")
