from __future__ import annotations

import argparse
import json
import re
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Callable, ContextManager

from dateutil import parser as date_parser
from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db import init_db
from app.domain import CanonicalRecord, UpstreamEvent, compute_price_update
from app.models import MarketRecord
from app.repositories import BatchedWriter, MarketRepository, ShockAlertRepository
from ingestion.client import PolymarketClient
from ingestion.normalize import (
    classify_item,
    classify_payload,
    extract_probability,
    is_closed,
    normalize_event,
)
from ingestion.service import session_scope

from .identity import IdentityResolver
from .shock_detector import ShockDetector

_PLAIN_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EPOCH_MS = re.compile(r"^\d+$")


class MalformedRecordError(ValueError):
    """Raised when no usable probability can be derived for a matched market."""


@dataclass(slots=True)
class SyncResult:
    updated: int = 0
    errors: int = 0
    shocks: int = 0
    skipped: int = 0
    alert_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SyncOutcome:
    success: bool
    timestamp: datetime
    result: SyncResult | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error or "Unknown error"}
        payload: dict[str, Any] = {"success": True}
        payload.update((self.result or SyncResult()).to_dict())
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_past_resolution(value: date | datetime | str | None, now: datetime) -> bool:
    """Whether a market's resolve date has already passed.

    Plain dates compare at calendar-day granularity (today is still live);
    values with a time component compare as exact instants.
    """

    if value is None or value == "":
        return False
    now = _as_aware(now)
    if isinstance(value, datetime):
        return _as_aware(value) < now
    if isinstance(value, date):
        return value < now.date()

    text = str(value).strip()
    try:
        if _PLAIN_DATE.match(text):
            return date.fromisoformat(text) < now.date()
        if _EPOCH_MS.match(text):
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc) < now
        return _as_aware(date_parser.isoparse(text)) < now
    except (ValueError, OverflowError):
        logger.warning("Unparseable resolve date {!r}; treating market as live", value)
        return False


def _valid_probability(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if 0.0 <= parsed <= 1.0 else None


class ReconciliationEngine:
    """Run fetch -> normalize -> match -> update -> shock-check cycles.

    One engine owns one :class:`ShockDetector`, so shock history survives
    across cycles for as long as the engine lives.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        detector: ShockDetector | None = None,
        client_factory: Callable[[], PolymarketClient] | None = None,
        session_factory: Callable[[], ContextManager[Session]] | None = None,
        init_db_fn: Callable[[], None] = init_db,
        clock: Callable[[], datetime] = _utcnow,
        probability_extractor: Callable[..., float | None] = extract_probability,
    ) -> None:
        self.settings = settings
        self.detector = detector or ShockDetector(clock=clock)
        self._clock = clock
        self._extract_probability = probability_extractor

        if session_factory is None:
            init_db_fn()
            session_factory = session_scope
        self._session_factory = session_factory

        if client_factory is None:
            def _default_client_factory() -> PolymarketClient:
                return PolymarketClient(
                    batch_size=settings.sync_fetch_batch_size,
                    batch_delay=settings.sync_fetch_batch_delay_seconds,
                    timeout=settings.upstream_timeout_seconds,
                )

            client_factory = _default_client_factory
        self._client_factory = client_factory

    # ------------------------------------------------------------------
    # Cycle

    def run_cycle(self) -> SyncResult:
        result = SyncResult()
        self.detector.cleanup()
        now = self._clock()
        logger.info("Starting market sync cycle at {}", now.isoformat())

        with self._session_factory() as session:
            market_repo = MarketRepository(session)
            resolver = IdentityResolver(
                market_repo.list_markets_for_sync(),
                title_fallback=self.settings.sync_title_fallback,
            )
            if not resolver.has_candidates:
                logger.info("No markets with upstream identifiers; nothing to sync")
                return result
            if resolver.unresolvable and not resolver.title_fallback:
                logger.debug(
                    "{} markets have no upstream id and are not synced",
                    len(resolver.unresolvable),
                )

            candidates = self._normalize(self._fetch_upstream(resolver), resolver)
            logger.info(
                "{} upstream candidates for {} known market ids",
                len(candidates),
                len(resolver.known_ids),
            )

            writer = BatchedWriter(session, limit=self.settings.sync_write_batch_limit)
            seen: set[str] = set()
            for candidate in candidates:
                match = resolver.match(candidate)
                if match is None:
                    continue
                record = match.record
                if record.local_id in seen:
                    continue
                seen.add(record.local_id)
                self._reconcile(session, market_repo, writer, record, candidate, now, result)

            stored_alert = None
            alert = self.detector.check_alert()
            if alert is not None:
                try:
                    writer.reserve()
                    with session.begin_nested():
                        ShockAlertRepository(session).create_alert(alert)
                    writer.record()
                    stored_alert = alert
                except Exception:  # noqa: BLE001
                    logger.exception("Failed to persist shock alert {}", alert.alert_id)
                    result.errors += 1

        # Only a committed alert closes the crossing.
        if stored_alert is not None:
            self.detector.acknowledge_alert()
            result.alert_id = stored_alert.alert_id

        logger.info(
            "Market sync complete: {} updated, {} errors, {} shocks, {} skipped",
            result.updated,
            result.errors,
            result.shocks,
            result.skipped,
        )
        return result

    def _fetch_upstream(self, resolver: IdentityResolver) -> list[UpstreamEvent]:
        client = self._client_factory()
        try:
            raw_markets = client.fetch_markets(sorted(resolver.known_ids)) if resolver.known_ids else []
            events = [classify_item(market) for market in raw_markets]
            if not raw_markets:
                logger.info("No markets returned by id; falling back to bulk listing")
                events.extend(classify_payload(client.fetch_listing()))
            elif resolver.title_fallback and resolver.known_questions:
                events.extend(classify_payload(client.fetch_listing()))
            return events
        finally:
            client.close()

    def _normalize(
        self, events: list[UpstreamEvent], resolver: IdentityResolver
    ) -> list[CanonicalRecord]:
        candidates: dict[str, CanonicalRecord] = {}
        for event in events:
            for record in normalize_event(
                event,
                resolver.known_ids,
                known_questions=resolver.known_questions,
                min_volume=self.settings.min_volume_usd,
                max_markets=self.settings.max_markets_per_event,
            ):
                candidates.setdefault(record.external_id, record)
        return list(candidates.values())

    def _reconcile(
        self,
        session: Session,
        market_repo: MarketRepository,
        writer: BatchedWriter,
        record: MarketRecord,
        candidate: CanonicalRecord,
        now: datetime,
        result: SyncResult,
    ) -> None:
        local_id = record.local_id
        try:
            if is_past_resolution(record.resolve_date, now):
                result.skipped += 1
                return
            if is_closed(candidate.raw):
                result.skipped += 1
                return

            stored = _valid_probability(record.probability)
            new_probability = self._extract_probability(candidate.raw, fallback=stored)
            if new_probability is None:
                raise MalformedRecordError(
                    f"no usable probability for market {local_id} (upstream {candidate.external_id})"
                )

            update = compute_price_update(
                stored_probability=record.probability,
                stored_previous=record.previous_probability,
                stored_delta=record.change_delta,
                new_probability=new_probability,
            )
            writer.reserve()
            with session.begin_nested():
                market_repo.apply_price_update(record, update, updated_at=now)
            writer.record()
            result.updated += 1

            if self.detector.detect_shock(local_id, stored or 0.0, new_probability):
                result.shocks += 1
        except Exception:  # noqa: BLE001
            logger.exception("Failed to reconcile market {}", local_id)
            result.errors += 1


@lru_cache
def get_default_engine() -> ReconciliationEngine:
    return ReconciliationEngine(get_settings())


def run_market_sync(engine: ReconciliationEngine | None = None) -> SyncOutcome:
    """Run one cycle and always return a structured outcome."""

    try:
        engine = engine or get_default_engine()
        result = engine.run_cycle()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Market sync cycle failed")
        return SyncOutcome(success=False, timestamp=_utcnow(), error=str(exc))
    return SyncOutcome(success=True, timestamp=_utcnow(), result=result)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one market reconciliation cycle")
    parser.add_argument(
        "--title-fallback",
        action="store_true",
        help="Also match markets without an upstream id by question text",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    settings = get_settings()
    if args.title_fallback:
        settings = settings.model_copy(update={"sync_title_fallback": True})
    outcome = run_market_sync(ReconciliationEngine(settings))
    print(json.dumps(outcome.to_dict(), indent=2))
    if not outcome.success:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
