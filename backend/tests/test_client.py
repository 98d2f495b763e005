from __future__ import annotations

import httpx

from ingestion.client import PolymarketClient


def _client(handler, **kwargs) -> PolymarketClient:
    return PolymarketClient(
        base_url="https://gamma.test",
        markets_path="/markets",
        batch_delay=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_fetch_markets_tolerates_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        market_id = request.url.path.rsplit("/", 1)[-1]
        if market_id == "404":
            return httpx.Response(404)
        if market_id == "500":
            return httpx.Response(500, text="upstream down")
        if market_id == "bad":
            return httpx.Response(200, text="<html>")
        if market_id == "boom":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"id": market_id, "question": "Q?"})

    with _client(handler, batch_size=2) as client:
        markets = client.fetch_markets(["1", "404", "500", "bad", "boom", "2", "1"])

    assert [market["id"] for market in markets] == ["1", "2"]


def test_fetch_markets_batches_requests():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"id": request.url.path.rsplit("/", 1)[-1]})

    with _client(handler, batch_size=10) as client:
        markets = client.fetch_markets([str(index) for index in range(25)])

    assert len(markets) == 25
    assert sorted(seen) == sorted(f"/markets/{index}" for index in range(25))


def test_fetch_listing_returns_payload_or_none():
    payload = {"events": [{"id": "e1", "markets": []}]}

    with _client(lambda request: httpx.Response(200, json=payload)) as client:
        assert client.fetch_listing() == payload

    with _client(lambda request: httpx.Response(503)) as client:
        assert client.fetch_listing() is None
