from __future__ import annotations

import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import httpx
from loguru import logger

from app.core.config import settings


class PolymarketClient:
    """Thin wrapper around the Gamma market endpoints.

    Every fetch is tolerant: HTTP errors, non-200 responses and undecodable
    bodies are logged and reported as "no data".
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        markets_path: str | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.polymarket_base_url)
        self.markets_path = (markets_path or settings.polymarket_markets_path).rstrip("/")
        self.batch_size = batch_size or settings.sync_fetch_batch_size
        self.batch_delay = settings.sync_fetch_batch_delay_seconds if batch_delay is None else batch_delay
        self.timeout = timeout or settings.upstream_timeout_seconds
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def _get_json(self, path: str) -> Any | None:
        try:
            response = self.client.get(path)
        except httpx.HTTPError as exc:
            logger.warning("Gamma GET {} failed: {}", path, exc)
            return None
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning("Gamma GET {} returned {}", path, response.status_code)
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("Gamma GET {} returned a non-JSON body", path)
            return None

    def fetch_market(self, market_id: str) -> dict[str, Any] | None:
        payload = self._get_json(f"{self.markets_path}/{market_id}")
        if isinstance(payload, dict):
            return payload
        if payload is not None:
            logger.warning("Unexpected payload for market {}: {}", market_id, type(payload).__name__)
        return None

    def fetch_markets(self, market_ids: Iterable[str]) -> list[dict[str, Any]]:
        """Fetch markets one by one in small concurrent batches."""

        ids = list(dict.fromkeys(market_ids))
        markets: list[dict[str, Any]] = []
        if not ids:
            return markets

        logger.info("Fetching {} markets by id (batch size {})", len(ids), self.batch_size)
        with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
            for start in range(0, len(ids), self.batch_size):
                batch = ids[start : start + self.batch_size]
                for market_id, market in zip(batch, executor.map(self.fetch_market, batch)):
                    if market is None:
                        logger.debug("Market {} not returned by Gamma", market_id)
                        continue
                    markets.append(market)
                if self.batch_delay and start + self.batch_size < len(ids):
                    time.sleep(self.batch_delay)
        return markets

    def fetch_listing(self) -> Any | None:
        logger.info("Gamma GET {} (bulk listing)", self.markets_path)
        return self._get_json(self.markets_path)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PolymarketClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
