import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

# Base class cho models
Base = declarative_base()


def build_engine(db_url: str, echo: bool = False):
    """Create the ledger engine for ``db_url``.

    SQLite gets WAL and a busy timeout so concurrent request threads read
    while one writes; server databases get a pre-pinged, recycled pool.
    """
    if db_url.startswith("sqlite"):
        database = make_url(db_url).database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(
            db_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA temp_store=MEMORY")
            cursor.execute("PRAGMA cache_size=-64000")  # ~64MB cache
            cursor.close()
    else:
        connect_args = {}
        if db_url.startswith("mysql"):
            connect_args = {"charset": "utf8mb4", "use_unicode": True}
        engine = create_engine(
            db_url,
            pool_pre_ping=True,  # Kiểm tra connection trước khi sử dụng
            pool_recycle=3600,   # Recycle connection sau 1 giờ
            echo=echo,
            connect_args=connect_args,
        )
    return engine


def make_session_factory(engine):
    # expire_on_commit=False: services hand committed rows back to the API layer
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


def init_database(engine):
    """Create all ledger tables that do not exist yet."""
    from lanvault.db import base

    base.Base.metadata.create_all(bind=engine)
    logger.info("Ledger tables ready (%s)", engine.url.get_backend_name())
