"""Higher-level conveniences for reading persisted markets and alerts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Sequence

from sqlalchemy.orm import Session

from app.models import MarketRecord
from app.repositories import MarketRepository, ShockAlertRepository
from app.schemas import Market, ShockAlert
from ingestion.normalize import parse_volume


@dataclass(slots=True)
class MarketQuery:
    start: date | None = None
    end: date | None = None
    catalyst: str | None = None
    top_per_catalyst: bool = False
    limit: int = 50
    offset: int = 0

    def to_repository_kwargs(self) -> dict[str, Any]:
        """Serialize the query so repository functions receive consistent kwargs."""

        return {
            "resolve_after": self.start,
            "resolve_before": self.end,
            "catalyst": self.catalyst,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(slots=True)
class MarketQueryResult:
    total: int
    markets: Sequence[Market]


def select_top_volume_per_catalyst(records: Sequence[MarketRecord]) -> list[MarketRecord]:
    """Keep the highest-volume market of each catalyst group on each resolve date.

    Markets without a catalyst are passed through after the selected ones.
    Ties keep the first market seen.
    """

    selected: dict[tuple[date, str], MarketRecord] = {}
    best_volume: dict[tuple[date, str], float] = {}
    ungrouped: list[MarketRecord] = []
    for record in records:
        catalyst = (record.catalyst or "").strip()
        if not catalyst:
            ungrouped.append(record)
            continue
        key = (record.resolve_date, catalyst)
        volume = parse_volume(record.volume) or 0.0
        if key not in selected or volume > best_volume[key]:
            selected[key] = record
            best_volume[key] = volume
    return [*selected.values(), *ungrouped]


class MarketService:
    """Read-only facade over market listings and shock alerts used by the API."""

    def __init__(self, session: Session):
        self._session = session
        self._market_repo = MarketRepository(session)
        self._alert_repo = ShockAlertRepository(session)

    def list_markets(self, query: MarketQuery) -> MarketQueryResult:
        if not query.top_per_catalyst:
            raw_markets, total = self._market_repo.list_markets(**query.to_repository_kwargs())
            return MarketQueryResult(total=total, markets=self._normalize_markets(raw_markets))

        # Grouping needs the whole window before paginating.
        kwargs = query.to_repository_kwargs()
        kwargs.update(limit=None, offset=0)
        raw_markets, _ = self._market_repo.list_markets(**kwargs)
        selected = select_top_volume_per_catalyst(raw_markets)
        page = selected[query.offset : query.offset + query.limit]
        return MarketQueryResult(total=len(selected), markets=self._normalize_markets(page))

    def get_market(self, local_id: str) -> Market | None:
        market = self._market_repo.get_market(local_id)
        if not market:
            return None
        return Market.model_validate(market)

    def list_alerts(self, *, limit: int = 20) -> list[ShockAlert]:
        return [ShockAlert.model_validate(alert) for alert in self._alert_repo.list_alerts(limit=limit)]

    def _normalize_markets(self, raw_markets: Sequence[Any]) -> list[Market]:
        """Convert ORM models into API schemas while preserving order."""

        return [Market.model_validate(record) for record in raw_markets]


__all__ = ["MarketQuery", "MarketQueryResult", "MarketService", "select_top_volume_per_catalyst"]
