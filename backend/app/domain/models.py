"""Typed domain representations shared by ingestion, reconciliation, and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


@dataclass(slots=True)
class UpstreamMarket:
    """A single upstream sub-market as reported by the Gamma API."""

    market_id: str | None
    question: str | None
    volume: Any
    end_date: str | None
    closed: bool
    resolved: bool
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class UpstreamEvent:
    """Upstream event wrapping zero or more sub-markets.

    Bare markets are wrapped into a single-market event at ingestion so the
    normalizer only ever deals with this shape.
    """

    event_id: str | None
    title: str | None
    tags: list[Any] = field(default_factory=list)
    markets: list[UpstreamMarket] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CanonicalRecord:
    """Filtered, ranked upstream market ready to be matched against the store."""

    external_id: str
    catalyst_name: str
    question: str
    price: str
    volume: float | str
    end_date: str
    tags: str
    probability: float
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ImportedMarket:
    """Market parsed from a bulk JSON import."""

    local_id: str
    title: str
    resolve_date: date
    probability: float
    external_id: str | None = None
    question: str | None = None
    catalyst: str | None = None
    volume: float | str | None = None
    tags: list[str] = field(default_factory=list)
    extra_fields: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PriceUpdate:
    """Price-related fields to write back onto a stored market."""

    probability: float
    previous_probability: float | None
    change_delta: float
    changed: bool


@dataclass(slots=True)
class Shock:
    market_id: str
    previous_probability: float
    new_probability: float
    delta: float
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "previous_probability": self.previous_probability,
            "new_probability": self.new_probability,
            "delta": self.delta,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class ShockAlertData:
    alert_id: str
    shock_count: int
    window_start: datetime
    window_end: datetime
    shocks: list[Shock]
    created_at: datetime
