from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.config import Settings
from app.db import Base
from app.models import MarketRecord


class FakeClock:
    """Controllable UTC clock shared by the detector and the engine."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(bind=engine, autoflush=True, future=True)

    @contextmanager
    def scope() -> Iterator[Session]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return scope


@pytest.fixture
def db_session(session_factory) -> Iterator[Session]:
    with session_factory() as session:
        yield session


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        database_url="sqlite://",
        enable_sync_schedule=False,
        sync_fetch_batch_delay_seconds=0,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def add_market(session_factory):
    """Persist a market row with sensible defaults and return its local id."""

    def _add(local_id: str, **overrides) -> str:
        values = {
            "local_id": local_id,
            "title": overrides.pop("title", local_id.replace("-", " ")),
            "resolve_date": date(2025, 3, 20),
            "probability": 0.5,
            "previous_probability": None,
            "change_delta": 0.0,
            "tags": [],
            "last_updated": datetime(2025, 3, 1, tzinfo=timezone.utc),
            "source": "bulk_import",
        }
        values.update(overrides)
        with session_factory() as session:
            session.add(MarketRecord(**values))
        return local_id

    return _add


@pytest.fixture
def upstream_market():
    """Build a Gamma market payload that passes every normalizer filter by default."""

    def _build(market_id: str, **overrides) -> dict[str, object]:
        market: dict[str, object] = {
            "id": market_id,
            "question": f"Question {market_id}?",
            "volume": "50000",
            "lastTradePrice": 0.5,
            "closed": False,
            "endDate": "2025-03-20T00:00:00Z",
        }
        market.update(overrides)
        return market

    return _build
