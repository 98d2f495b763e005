from collections.abc import Generator
from functools import lru_cache
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import StorageInitializationError, settings

Base = declarative_base()


def _ensure_sqlite_path(url: str) -> None:
    if not url.startswith("sqlite"):
        return

    parsed = make_url(url)
    database = parsed.database
    if not database or database == ":memory:":
        return

    path = Path(database)
    path.parent.mkdir(parents=True, exist_ok=True)


def _create_engine(url: str) -> Engine:
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {
        "echo": settings.debug,
        "future": True,
        "pool_pre_ping": True,
    }

    try:
        parsed = make_url(url)
    except ArgumentError as exc:
        raise StorageInitializationError(f"Invalid storage URL: {exc}") from exc
    backend = parsed.get_backend_name()

    if backend == "sqlite":
        connect_args["check_same_thread"] = False
        _ensure_sqlite_path(url)
    else:
        # Recycle long-lived connections so pooled Postgres idle timeouts
        # do not kill them between scheduled cycles.
        engine_kwargs["pool_recycle"] = 300

        if backend.startswith("postgresql"):
            connect_args.setdefault("keepalives", 1)
            connect_args.setdefault("keepalives_idle", 120)
            connect_args.setdefault("keepalives_interval", 30)
            connect_args.setdefault("keepalives_count", 5)

    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    try:
        return create_engine(url, **engine_kwargs)
    except (ArgumentError, ImportError) as exc:
        raise StorageInitializationError(f"Failed to create storage engine: {exc}") from exc


@lru_cache
def get_engine() -> Engine:
    """Build the process-wide engine on first use.

    Raises :class:`StorageInitializationError` when credentials are absent or invalid.
    """

    return _create_engine(settings.resolved_database_url)


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=True, autocommit=False, future=True)


def get_db() -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def init_db() -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


__all__ = [
    "Base",
    "StorageInitializationError",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
]
