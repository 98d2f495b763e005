"""Market-focused data access helpers."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from loguru import logger
from sqlalchemy import asc, func, select
from sqlalchemy.orm import Session

from app.domain import ImportedMarket, PriceUpdate, compute_price_update
from app.models import MarketRecord, MarketSource


class MarketRepository:
    """Encapsulate all market record persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def apply_price_update(
        self, record: MarketRecord, update: PriceUpdate, *, updated_at: datetime
    ) -> MarketRecord:
        # Descriptive fields come from the authoritative import and are never
        # touched here.
        record.probability = update.probability
        record.previous_probability = update.previous_probability
        record.change_delta = update.change_delta
        record.last_updated = updated_at
        return record

    def import_market(
        self, market: ImportedMarket, *, imported_at: datetime
    ) -> tuple[MarketRecord, bool]:
        """Insert or refresh an imported market, returning the record and whether its price moved."""

        existing = self._session.get(MarketRecord, market.local_id)
        changed = False
        if existing is None:
            existing = MarketRecord(
                local_id=market.local_id,
                probability=market.probability,
                previous_probability=None,
                change_delta=0.0,
                source=MarketSource.BULK_IMPORT.value,
            )
            self._session.add(existing)
        else:
            update = compute_price_update(
                stored_probability=existing.probability,
                stored_previous=existing.previous_probability,
                stored_delta=existing.change_delta,
                new_probability=market.probability,
            )
            existing.probability = update.probability
            existing.previous_probability = update.previous_probability
            existing.change_delta = update.change_delta
            changed = update.changed

        existing.title = market.title
        existing.question = market.question
        existing.catalyst = market.catalyst
        existing.resolve_date = market.resolve_date
        existing.volume = market.volume
        existing.tags = list(market.tags)
        existing.last_updated = imported_at
        if market.extra_fields:
            merged = dict(existing.extra_fields or {})
            merged.update(market.extra_fields)
            existing.extra_fields = merged

        if market.external_id and existing.external_id != market.external_id:
            self._assign_external_id(existing, market.external_id)

        return existing, changed

    def _assign_external_id(self, record: MarketRecord, external_id: str) -> None:
        if record.external_id:
            logger.warning(
                "Market {} already bound to external id {}; ignoring {}",
                record.local_id,
                record.external_id,
                external_id,
            )
            return
        owner = self.find_by_external_id(external_id)
        if owner is not None and owner.local_id != record.local_id:
            logger.warning(
                "External id {} already belongs to market {}; not assigning it to {}",
                external_id,
                owner.local_id,
                record.local_id,
            )
            return
        record.external_id = external_id

    # ------------------------------------------------------------------
    # Queries

    def list_markets_for_sync(self) -> list[MarketRecord]:
        query = select(MarketRecord).order_by(MarketRecord.local_id.asc())
        return list(self._session.execute(query).scalars().all())

    def get_market(self, local_id: str) -> MarketRecord | None:
        return self._session.get(MarketRecord, local_id)

    def find_by_external_id(self, external_id: str) -> MarketRecord | None:
        query = select(MarketRecord).where(MarketRecord.external_id == external_id)
        return self._session.execute(query).scalar_one_or_none()

    def list_markets(
        self,
        *,
        resolve_after: date | None = None,
        resolve_before: date | None = None,
        catalyst: str | None = None,
        limit: int | None = 50,
        offset: int = 0,
    ) -> tuple[list[MarketRecord], int]:
        filters: list[Any] = []
        if resolve_after:
            filters.append(MarketRecord.resolve_date >= resolve_after)
        if resolve_before:
            filters.append(MarketRecord.resolve_date <= resolve_before)
        if catalyst:
            filters.append(MarketRecord.catalyst == catalyst)

        query = (
            select(MarketRecord)
            .where(*filters)
            .order_by(asc(MarketRecord.resolve_date), asc(MarketRecord.local_id))
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        total_query = select(func.count(MarketRecord.local_id)).where(*filters)

        markets = list(self._session.execute(query).scalars().all())
        total = self._session.execute(total_query).scalar_one()
        return markets, total


__all__ = ["MarketRepository"]
