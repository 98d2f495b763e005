from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Collection, Mapping, Sequence
from typing import Any

from loguru import logger

from app.domain import CanonicalRecord, UpstreamEvent, UpstreamMarket

MIN_VOLUME_USD = 20_000
PRICE_FLOOR = 0.01
PRICE_CEILING = 0.99
MAX_MARKETS_PER_EVENT = 5

FieldCandidate = str | Callable[[Mapping[str, Any]], Any]

_VOLUME_NOISE = re.compile(r"[,$\s]")
_WHITESPACE = re.compile(r"\s+")


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def _parse_probability(value: Any) -> float | None:
    parsed = _parse_float(value)
    if parsed is None or not 0.0 <= parsed <= 1.0:
        return None
    return parsed


def _first_outcome_price(record: Mapping[str, Any]) -> Any:
    prices = _as_list(record.get("outcomePrices"))
    return prices[0] if prices else None


PROBABILITY_FIELDS: tuple[FieldCandidate, ...] = (
    "lastTradePrice",
    "bestBid",
    "price",
    "yesPrice",
    "yes_price",
    _first_outcome_price,
)
VOLUME_FIELDS: tuple[FieldCandidate, ...] = ("volume", "volumeNum", "volumeUsd")
END_DATE_FIELDS: tuple[FieldCandidate, ...] = (
    "endDate",
    "end_date",
    "expirationDate",
    "endDateIso",
)


def resolve_field(
    candidates: Sequence[FieldCandidate],
    record: Mapping[str, Any],
    fallback: Any = None,
    *,
    parse: Callable[[Any], Any] | None = None,
) -> Any:
    """Return the first candidate value that is present (and parses), else ``fallback``."""

    for candidate in candidates:
        value = candidate(record) if callable(candidate) else record.get(candidate)
        if value is None:
            continue
        if parse is not None:
            value = parse(value)
            if value is None:
                continue
        return value
    return fallback


def extract_probability(record: Mapping[str, Any], fallback: float | None = None) -> float | None:
    return resolve_field(PROBABILITY_FIELDS, record, fallback, parse=_parse_probability)


def parse_volume(value: Any) -> float | None:
    if isinstance(value, str):
        return _parse_float(_VOLUME_NOISE.sub("", value))
    return _parse_float(value)


def _coerce_volume(value: Any) -> float | str:
    if isinstance(value, str):
        parsed = parse_volume(value)
        return value if parsed is None else parsed
    parsed = parse_volume(value)
    return parsed if parsed is not None else 0


def tags_to_string(tags: Sequence[Any] | None) -> str:
    labels: list[str] = []
    for tag in tags or []:
        if isinstance(tag, Mapping):
            label = tag.get("slug") or tag.get("label")
        else:
            label = tag
        if not label:
            continue
        labels.append(_WHITESPACE.sub("_", str(label).strip().lower()))
    return "|".join(label for label in labels if label)


def is_closed(record: Mapping[str, Any]) -> bool:
    return bool(record.get("closed")) or bool(record.get("resolved"))


def _usable_volume(value: Any) -> Any:
    return value if parse_volume(value) is not None else None


def _build_market(raw_market: Mapping[str, Any]) -> UpstreamMarket:
    raw_id = raw_market.get("id") or raw_market.get("marketId")
    return UpstreamMarket(
        market_id=str(raw_id) if raw_id not in (None, "") else None,
        question=raw_market.get("question"),
        volume=resolve_field(
            VOLUME_FIELDS,
            raw_market,
            resolve_field(VOLUME_FIELDS, raw_market),
            parse=_usable_volume,
        ),
        end_date=resolve_field(END_DATE_FIELDS, raw_market),
        closed=bool(raw_market.get("closed")),
        resolved=bool(raw_market.get("resolved")),
        raw=dict(raw_market),
    )


def _build_event(raw_event: Mapping[str, Any]) -> UpstreamEvent:
    markets = [
        _build_market(item) for item in _as_list(raw_event.get("markets")) if isinstance(item, Mapping)
    ]
    raw_id = raw_event.get("id") or raw_event.get("eventId")
    return UpstreamEvent(
        event_id=str(raw_id) if raw_id else None,
        title=raw_event.get("title") or None,
        tags=_as_list(raw_event.get("tags")),
        markets=markets,
        raw=dict(raw_event),
    )


def _wrap_market(raw_market: Mapping[str, Any]) -> UpstreamEvent:
    """Wrap a bare market, borrowing title and tags from its embedded parent event."""

    parents = _as_list(raw_market.get("events"))
    parent = parents[0] if parents and isinstance(parents[0], Mapping) else {}
    raw_event_id = parent.get("id")
    return UpstreamEvent(
        event_id=str(raw_event_id) if raw_event_id else None,
        title=parent.get("title") or None,
        tags=_as_list(parent.get("tags")) or _as_list(raw_market.get("tags")),
        markets=[_build_market(raw_market)],
        raw=dict(parent),
    )


def classify_item(item: Mapping[str, Any]) -> UpstreamEvent:
    if isinstance(item.get("markets"), list):
        return _build_event(item)
    return _wrap_market(item)


def classify_payload(payload: Any) -> list[UpstreamEvent]:
    """Turn any supported listing envelope into upstream events."""

    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, Mapping):
        items = next(
            (
                payload[key]
                for key in ("events", "markets")
                if isinstance(payload.get(key), list)
            ),
            None,
        )
        if items is None:
            logger.warning(
                "Unexpected upstream envelope with keys {}", sorted(payload.keys())
            )
            return []
    else:
        if payload is not None:
            logger.warning("Unexpected upstream payload type {}", type(payload).__name__)
        return []

    return [classify_item(item) for item in items if isinstance(item, Mapping)]


def _passes_filters(
    market: UpstreamMarket,
    *,
    known_ids: Collection[str],
    known_questions: Collection[str],
    min_volume: float,
) -> bool:
    volume = parse_volume(market.volume)
    if volume is None or volume < min_volume:
        return False
    if market.closed or market.resolved:
        return False
    probability = extract_probability(market.raw)
    if probability is None or not PRICE_FLOOR < probability < PRICE_CEILING:
        return False
    if not market.market_id:
        return False
    if market.market_id in known_ids:
        return True
    return bool(
        known_questions
        and market.question
        and market.question.strip().casefold() in known_questions
    )


def normalize_event(
    event: UpstreamEvent,
    known_ids: Collection[str],
    *,
    known_questions: Collection[str] = (),
    min_volume: float = MIN_VOLUME_USD,
    max_markets: int = MAX_MARKETS_PER_EVENT,
) -> list[CanonicalRecord]:
    """Filter, rank and flatten an upstream event into canonical records.

    Only markets already known to the local store survive; the normalizer
    never introduces new markets.
    """

    if not event.title and not event.markets:
        logger.debug("Dropping upstream event {} with no title and no markets", event.event_id)
        return []

    survivors = [
        market
        for market in event.markets
        if _passes_filters(
            market,
            known_ids=known_ids,
            known_questions=known_questions,
            min_volume=min_volume,
        )
    ]
    survivors.sort(key=lambda market: parse_volume(market.volume) or 0.0, reverse=True)

    tags = tags_to_string(event.tags)
    records: list[CanonicalRecord] = []
    for market in survivors[:max_markets]:
        probability = extract_probability(market.raw)
        question = market.question or ""
        records.append(
            CanonicalRecord(
                external_id=str(market.market_id),
                catalyst_name=event.title or question,
                question=question,
                price=f"{probability:.2f}",
                volume=_coerce_volume(market.volume),
                end_date=market.end_date or "",
                tags=tags,
                probability=probability,
                raw=market.raw,
            )
        )
    return records


__all__ = [
    "END_DATE_FIELDS",
    "MAX_MARKETS_PER_EVENT",
    "MIN_VOLUME_USD",
    "PRICE_CEILING",
    "PRICE_FLOOR",
    "PROBABILITY_FIELDS",
    "VOLUME_FIELDS",
    "classify_item",
    "classify_payload",
    "extract_probability",
    "is_closed",
    "normalize_event",
    "parse_volume",
    "resolve_field",
    "tags_to_string",
]
