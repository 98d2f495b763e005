"""Pair upstream canonical records with persisted market records."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from app.domain import CanonicalRecord

LEGACY_ID_KEYS = ("MarketID", "MarketId")
FALLBACK_ID_KEYS = ("gammaMarketId", "market_id")


class MatchStrategy(str, Enum):
    EXTERNAL_ID = "external_id"
    LEGACY_ID = "legacy_id"
    FALLBACK_ID = "fallback_id"
    TITLE = "title"


class PersistedMarket(Protocol):
    local_id: str
    external_id: str | None
    title: str
    question: str | None
    extra_fields: dict[str, Any] | None


@dataclass(slots=True)
class IdentityMatch:
    record: PersistedMarket
    strategy: MatchStrategy


def _first_present(extra: Mapping[str, Any], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = extra.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def resolve_external_id(record: PersistedMarket) -> tuple[str, MatchStrategy] | None:
    """Return the upstream id a record exposes, with the lookup that produced it."""

    if record.external_id:
        return str(record.external_id), MatchStrategy.EXTERNAL_ID
    extra = record.extra_fields or {}
    legacy = _first_present(extra, LEGACY_ID_KEYS)
    if legacy:
        return legacy, MatchStrategy.LEGACY_ID
    fallback = _first_present(extra, FALLBACK_ID_KEYS)
    if fallback:
        return fallback, MatchStrategy.FALLBACK_ID
    return None


def _text_key(value: str | None) -> str | None:
    if not value:
        return None
    key = value.strip().casefold()
    return key or None


class IdentityResolver:
    """Lookup from upstream ids (and optionally question text) to stored records.

    Exact id matching is authoritative. Title matching only applies to records
    that expose no id at all, is disabled unless ``title_fallback`` is set, and
    refuses ambiguous text.
    """

    def __init__(self, records: Iterable[PersistedMarket], *, title_fallback: bool = False) -> None:
        self.title_fallback = title_fallback
        self._by_id: dict[str, IdentityMatch] = {}
        self._by_text: dict[str, list[PersistedMarket]] = {}
        self.unresolvable: list[PersistedMarket] = []

        for record in sorted(records, key=lambda item: item.local_id):
            resolved = resolve_external_id(record)
            if resolved is None:
                self.unresolvable.append(record)
                if title_fallback:
                    self._index_text(record)
                continue
            external_id, strategy = resolved
            owner = self._by_id.get(external_id)
            if owner is not None:
                logger.warning(
                    "External id {} claimed by both {} and {}; keeping {}",
                    external_id,
                    owner.record.local_id,
                    record.local_id,
                    owner.record.local_id,
                )
                continue
            self._by_id[external_id] = IdentityMatch(record=record, strategy=strategy)

    def _index_text(self, record: PersistedMarket) -> None:
        keys = {_text_key(record.question), _text_key(record.title)}
        for key in keys:
            if key:
                self._by_text.setdefault(key, []).append(record)

    @property
    def known_ids(self) -> frozenset[str]:
        return frozenset(self._by_id)

    @property
    def known_questions(self) -> frozenset[str]:
        return frozenset(self._by_text)

    @property
    def has_candidates(self) -> bool:
        return bool(self._by_id or self._by_text)

    def match(self, candidate: CanonicalRecord) -> IdentityMatch | None:
        match = self._by_id.get(candidate.external_id)
        if match is not None:
            if match.strategy is not MatchStrategy.EXTERNAL_ID:
                logger.info(
                    "Matched upstream {} to {} via {}",
                    candidate.external_id,
                    match.record.local_id,
                    match.strategy.value,
                )
            return match

        if not self.title_fallback:
            return None
        key = _text_key(candidate.question)
        if key is None:
            return None
        records = self._by_text.get(key, [])
        if len(records) > 1:
            logger.warning(
                "Title fallback for upstream {} is ambiguous ({} stored markets share '{}'); skipping",
                candidate.external_id,
                len(records),
                candidate.question,
            )
            return None
        if not records:
            return None
        logger.warning(
            "Matched upstream {} to {} by question text; consider importing its market id",
            candidate.external_id,
            records[0].local_id,
        )
        return IdentityMatch(record=records[0], strategy=MatchStrategy.TITLE)


__all__ = [
    "FALLBACK_ID_KEYS",
    "IdentityMatch",
    "IdentityResolver",
    "LEGACY_ID_KEYS",
    "MatchStrategy",
    "resolve_external_id",
]
