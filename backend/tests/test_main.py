from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app import schemas
from app.main import _market_service, _sync_runner, app
from app.services.market_service import MarketQueryResult
from pipelines.market_sync import SyncOutcome, SyncResult


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthcheck(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["timestamp"]


def test_update_markets_success(client):
    timestamp = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
    outcome = SyncOutcome(
        success=True,
        timestamp=timestamp,
        result=SyncResult(updated=3, errors=1, shocks=2, skipped=1),
    )
    app.dependency_overrides[_sync_runner] = lambda: (lambda: outcome)

    response = client.post("/api/update-markets")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert (body["updated"], body["errors"], body["shocks"], body["skipped"]) == (3, 1, 2, 1)
    assert body["alert_id"] is None
    assert body["timestamp"].startswith("2025-03-10T12:00:00")


def test_update_markets_failure_returns_500(client):
    outcome = SyncOutcome(
        success=False, timestamp=datetime.now(timezone.utc), error="storage unavailable"
    )
    app.dependency_overrides[_sync_runner] = lambda: (lambda: outcome)

    response = client.post("/api/update-markets")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "storage unavailable"}


def test_list_markets_passes_query(client):
    mock_service = MagicMock()
    market = schemas.Market(
        local_id="import-fed-2025-03-20",
        title="Fed",
        resolve_date=date(2025, 3, 20),
        probability=0.4,
        source="bulk_import",
    )
    mock_service.list_markets.return_value = MarketQueryResult(total=1, markets=[market])
    app.dependency_overrides[_market_service] = lambda: mock_service

    response = client.get(
        "/markets", params={"start": "2025-03-01", "end": "2025-03-31", "top_per_catalyst": "true"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["local_id"] == "import-fed-2025-03-20"
    query = mock_service.list_markets.call_args.args[0]
    assert query.start == date(2025, 3, 1)
    assert query.end == date(2025, 3, 31)
    assert query.top_per_catalyst is True


def test_list_markets_rejects_inverted_window(client):
    app.dependency_overrides[_market_service] = lambda: MagicMock()

    response = client.get("/markets", params={"start": "2025-03-31", "end": "2025-03-01"})

    assert response.status_code == 422


def test_get_market_not_found(client):
    mock_service = MagicMock()
    mock_service.get_market.return_value = None
    app.dependency_overrides[_market_service] = lambda: mock_service

    response = client.get("/markets/missing")

    assert response.status_code == 404
    mock_service.get_market.assert_called_once_with("missing")


def test_list_shock_alerts(client):
    now = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
    alert = schemas.ShockAlert(
        alert_id="shock-1741608000000",
        shock_count=5,
        window_start=now,
        window_end=now,
        shocks=[
            schemas.Shock(
                market_id="m1", previous_probability=0.3, new_probability=0.4, delta=0.1, timestamp=now
            )
        ],
        created_at=now,
    )
    mock_service = MagicMock()
    mock_service.list_alerts.return_value = [alert]
    app.dependency_overrides[_market_service] = lambda: mock_service

    response = client.get("/shock-alerts", params={"limit": 5})

    assert response.status_code == 200
    assert response.json()["items"][0]["alert_id"] == "shock-1741608000000"
    mock_service.list_alerts.assert_called_once_with(limit=5)
