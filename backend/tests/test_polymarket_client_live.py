from __future__ import annotations

import pytest

from ingestion.client import PolymarketClient
from ingestion.normalize import classify_payload


@pytest.mark.network
def test_polymarket_client_live_fetches_listing_and_single_market():
    with PolymarketClient() as client:
        payload = client.fetch_listing()
        if payload is None:
            pytest.skip("Polymarket API unavailable")

        events = classify_payload(payload)
        assert events, "Polymarket API returned no markets"
        market = events[0].markets[0]
        assert market.market_id, "market payload missing identifier"

        fetched = client.fetch_markets([market.market_id])

    assert fetched, "per-id fetch returned nothing for a listed market"
    assert str(fetched[0].get("id")) == market.market_id
