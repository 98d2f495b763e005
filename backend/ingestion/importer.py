from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timezone
from typing import Any

from dateutil import parser as date_parser
from loguru import logger

from app.domain import ImportedMarket

TITLE_KEYS = ("title", "question", "catalyst", "market", "name", "event")
DATE_KEYS = ("resolveDate", "endDate", "end_date", "date", "expirationDate", "expiration")
PROBABILITY_KEYS = ("probability", "prob", "price", "last_price", "value")
EXTERNAL_ID_KEYS = ("marketId", "externalId")
CATALYST_KEYS = ("catalyst",)
QUESTION_KEYS = ("question",)
VOLUME_KEYS = ("volume",)
TAG_KEYS = ("tags", "tag")

# Everything else in an import row lands in extra_fields untouched. Id keys
# match exactly so legacy spellings such as "MarketID" are kept.
_CONSUMED_KEYS = frozenset(
    key.lower()
    for key in (*TITLE_KEYS, *DATE_KEYS, *PROBABILITY_KEYS, *VOLUME_KEYS, *TAG_KEYS, "id", "source")
)

_NON_ALNUM = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_PLAIN_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

LOCAL_ID_PREFIX = "import"
SLUG_LENGTH = 50


def derive_local_id(title: str, resolve_date: date) -> str:
    """Content-derived id: the same title and date always map to the same record."""

    slug = _NON_ALNUM.sub("-", str(title)).lower()[:SLUG_LENGTH]
    return f"{LOCAL_ID_PREFIX}-{slug}-{resolve_date.isoformat()}"


def _lookup(data: Mapping[str, Any], keys: Sequence[str], *, exact: bool = False) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    if exact:
        return None
    lowered = {str(key).lower(): key for key in data}
    for key in keys:
        found = lowered.get(key.lower())
        if found is not None and data[found] is not None:
            return data[found]
    return None


def _parse_resolve_date(value: Any) -> date | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    try:
        if _PLAIN_DATE.match(text):
            return date.fromisoformat(text)
        return date_parser.parse(text).date()
    except (ValueError, OverflowError):
        logger.warning("Could not parse import date {!r}", value)
        return None


def _parse_import_probability(value: Any) -> float | None:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(parsed) or math.isinf(parsed):
        return 0.0
    if parsed > 1:
        parsed = parsed / 100
    if not 0.0 <= parsed <= 1.0:
        return None
    return parsed


def _parse_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(item) for item in value]
    else:
        parts = str(value).split("|")
    return [part.strip().lower() for part in parts if part.strip()]


def _coerce_import_volume(value: Any) -> float | str | None:
    if value is None or isinstance(value, (int, float, str)) and not isinstance(value, bool):
        return value
    return str(value)


def normalize_import_record(item: Mapping[str, Any]) -> ImportedMarket | None:
    """Map a loosely shaped import row onto an :class:`ImportedMarket`.

    Rows exported from n8n wrap their payload in a ``json`` key. Returns
    ``None`` when the row lacks a usable title or resolve date.
    """

    data = item.get("json") if isinstance(item.get("json"), Mapping) else item

    title = _lookup(data, TITLE_KEYS)
    if isinstance(title, bool) or not isinstance(title, (str, int, float)) or title == "":
        return None

    resolve_date = _parse_resolve_date(_lookup(data, DATE_KEYS))
    if resolve_date is None:
        return None

    probability = _parse_import_probability(_lookup(data, PROBABILITY_KEYS))
    if probability is None:
        logger.warning("Skipping import row {!r}: probability out of range", title)
        return None

    external_id = _lookup(data, EXTERNAL_ID_KEYS, exact=True)
    catalyst = _lookup(data, CATALYST_KEYS)
    question = _lookup(data, QUESTION_KEYS)

    extra_fields = {
        str(key): value
        for key, value in data.items()
        if str(key).lower() not in _CONSUMED_KEYS
        and key not in EXTERNAL_ID_KEYS
        and value is not None
    }

    return ImportedMarket(
        local_id=derive_local_id(str(title), resolve_date),
        title=str(title),
        resolve_date=resolve_date,
        probability=probability,
        external_id=str(external_id) if external_id not in (None, "") else None,
        question=str(question) if question is not None else None,
        catalyst=str(catalyst) if catalyst is not None else None,
        volume=_coerce_import_volume(_lookup(data, VOLUME_KEYS)),
        tags=_parse_tags(_lookup(data, TAG_KEYS)),
        extra_fields=extra_fields,
    )


__all__ = ["derive_local_id", "normalize_import_record"]
