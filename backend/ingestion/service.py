from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ContextManager

from loguru import logger
from sqlalchemy.orm import Session

from app.db import get_session_factory
from app.repositories import BatchedWriter, MarketRepository
from app.repositories.batching import DEFAULT_BATCH_LIMIT

from .importer import normalize_import_record


@contextmanager
def session_scope() -> Iterator[Session]:
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@dataclass(slots=True)
class ImportSummary:
    imported: int = 0
    changed: int = 0
    skipped: int = 0


def import_markets(
    items: Iterable[Any],
    *,
    session_factory: Callable[[], ContextManager[Session]] = session_scope,
    write_batch_limit: int = DEFAULT_BATCH_LIMIT,
    now: datetime | None = None,
) -> ImportSummary:
    """Bulk import rows, applying the change-detection rule to existing records."""

    summary = ImportSummary()
    imported_at = now or datetime.now(timezone.utc)

    with session_factory() as session:
        market_repo = MarketRepository(session)
        writer = BatchedWriter(session, limit=write_batch_limit)
        for item in items:
            market = normalize_import_record(item) if isinstance(item, Mapping) else None
            if market is None:
                summary.skipped += 1
                continue
            writer.reserve()
            _, changed = market_repo.import_market(market, imported_at=imported_at)
            session.flush()
            writer.record()
            summary.imported += 1
            if changed:
                summary.changed += 1

    logger.info(
        "Imported {} markets ({} with price changes, {} skipped)",
        summary.imported,
        summary.changed,
        summary.skipped,
    )
    return summary
