from __future__ import annotations

from pathlib import Path

from loguru import logger
from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import Settings
from src.db.models.base import Base


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:")


def _postgres_driver_url(url: str) -> str:
    """Bare postgresql:// URLs use psycopg2, the installed driver."""
    parsed = make_url(url)
    if parsed.drivername == "postgresql":
        return parsed.set(drivername="postgresql+psycopg2").render_as_string(hide_password=False)
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(settings: Settings) -> Engine:
    """
    Build the SQLAlchemy engine for the configured database.

    The engine is owned by the process bootstrap (CLI command, API lifespan,
    test fixture) and passed down explicitly.
    """
    url = settings.database_url

    if settings.is_sqlite():
        connect_args = {"check_same_thread": False, "timeout": settings.db_pool_timeout}
        if _is_memory_sqlite(url):
            engine = create_engine(
                url, echo=settings.db_echo, connect_args=connect_args, poolclass=StaticPool
            )
        else:
            database = make_url(url).database
            if database:
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(url, echo=settings.db_echo, connect_args=connect_args)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        url = _postgres_driver_url(url)
        engine = create_engine(
            url,
            echo=settings.db_echo,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            pool_timeout=settings.db_pool_timeout,
        )

    logger.debug(f"Database engine created for {make_url(url).render_as_string(hide_password=True)}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory used by the storage layer."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized")


def check_database_health(engine: Engine) -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)
