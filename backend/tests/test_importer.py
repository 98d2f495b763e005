from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select

from app.models import MarketRecord
from ingestion.importer import derive_local_id, normalize_import_record
from ingestion.service import import_markets


def test_local_id_is_stable_for_title_and_date():
    first = normalize_import_record({"title": "BTC > $100k?", "resolveDate": "2025-03-20", "probability": 0.4})
    second = normalize_import_record({"Title": "BTC > $100k?", "endDate": "2025-03-20T18:00:00Z", "prob": 55})

    assert first.local_id == second.local_id == "import-btc----100k--2025-03-20"
    assert derive_local_id("x" * 80, date(2025, 1, 2)) == f"import-{'x' * 50}-2025-01-02"


def test_n8n_envelope_and_case_insensitive_keys():
    market = normalize_import_record(
        {
            "json": {
                "QUESTION": "Will the Fed cut?",
                "Date": "March 20, 2025",
                "Price": "62",
                "Catalyst": "FOMC",
                "Volume": "$1,200,000",
                "Tags": "Macro | Rates||",
            }
        }
    )

    assert market.title == "Will the Fed cut?"
    assert market.question == "Will the Fed cut?"
    assert market.resolve_date == date(2025, 3, 20)
    assert market.probability == pytest.approx(0.62)
    assert market.catalyst == "FOMC"
    assert market.volume == "$1,200,000"
    assert market.tags == ["macro", "rates"]


def test_rows_without_title_or_date_are_skipped():
    assert normalize_import_record({"resolveDate": "2025-03-20"}) is None
    assert normalize_import_record({"title": "No date"}) is None
    assert normalize_import_record({"title": "Bad date", "date": "soon"}) is None


def test_id_keys_are_kept_for_identity_resolution():
    market = normalize_import_record(
        {
            "title": "Legacy",
            "date": "2025-03-20",
            "MarketID": "55",
            "gammaMarketId": "56",
            "marketId": "57",
            "slug": "legacy",
        }
    )

    assert market.external_id == "57"
    assert market.extra_fields == {"MarketID": "55", "gammaMarketId": "56", "slug": "legacy"}


def test_missing_probability_defaults_to_zero():
    market = normalize_import_record({"title": "T", "date": "2025-03-20"})

    assert market.probability == 0.0


def test_import_applies_change_detection(session_factory):
    now = datetime(2025, 3, 10, tzinfo=timezone.utc)
    rows = [
        {"title": "Fed cut", "date": "2025-03-20", "probability": 0.40, "marketId": "1"},
        {"title": "No date"},
        "not a mapping",
    ]

    first = import_markets(rows, session_factory=session_factory, now=now)
    rows[0]["probability"] = 0.45
    second = import_markets(rows, session_factory=session_factory, now=now)
    third = import_markets(rows, session_factory=session_factory, now=now)

    assert (first.imported, first.changed, first.skipped) == (1, 0, 2)
    assert second.changed == 1
    assert third.changed == 0
    with session_factory() as session:
        [record] = session.execute(select(MarketRecord)).scalars().all()
        assert record.local_id == "import-fed-cut-2025-03-20"
        assert record.external_id == "1"
        assert record.probability == 0.45
        assert record.previous_probability == 0.40
        assert record.change_delta == 0.05


def test_import_never_steals_an_owned_external_id(session_factory):
    rows = [
        {"title": "First", "date": "2025-03-20", "marketId": "1"},
        {"title": "Second", "date": "2025-03-20", "marketId": "1"},
    ]

    summary = import_markets(rows, session_factory=session_factory, write_batch_limit=1)

    assert summary.imported == 2
    with session_factory() as session:
        owners = {
            record.local_id: record.external_id
            for record in session.execute(select(MarketRecord)).scalars().all()
        }
    assert owners == {"import-first-2025-03-20": "1", "import-second-2025-03-20": None}
