from __future__ import annotations

from datetime import date, datetime, timezone

from app.domain import Shock, ShockAlertData
from app.repositories import ShockAlertRepository
from app.services.market_service import MarketQuery, MarketService


def test_top_volume_market_per_catalyst_and_day(db_session, add_market):
    add_market("a-low", catalyst="FOMC", volume="25,000")
    add_market("a-high", catalyst="FOMC", volume="$90,000")
    add_market("a-next-day", catalyst="FOMC", volume=1000, resolve_date=date(2025, 3, 21))
    add_market("b-only", catalyst="CPI", volume=30000)
    add_market("loose", volume=5)

    result = MarketService(db_session).list_markets(MarketQuery(top_per_catalyst=True))

    assert result.total == 4
    assert [market.local_id for market in result.markets] == ["a-high", "b-only", "a-next-day", "loose"]


def test_listing_filters_by_resolve_window(db_session, add_market):
    add_market("early", resolve_date=date(2025, 3, 1))
    add_market("inside", resolve_date=date(2025, 3, 15))
    add_market("late", resolve_date=date(2025, 4, 1))

    result = MarketService(db_session).list_markets(
        MarketQuery(start=date(2025, 3, 10), end=date(2025, 3, 31))
    )

    assert result.total == 1
    assert [market.local_id for market in result.markets] == ["inside"]


def test_alerts_newest_first(db_session):
    repo = ShockAlertRepository(db_session)
    for minute in (0, 30):
        created = datetime(2025, 3, 10, 12, minute, tzinfo=timezone.utc)
        shock = Shock("m1", 0.3, 0.4, 0.1, created)
        repo.create_alert(
            ShockAlertData(
                alert_id=f"shock-{minute}",
                shock_count=1,
                window_start=created,
                window_end=created,
                shocks=[shock],
                created_at=created,
            )
        )
    db_session.flush()

    alerts = MarketService(db_session).list_alerts(limit=10)

    assert [alert.alert_id for alert in alerts] == ["shock-30", "shock-0"]
    assert alerts[0].shocks[0].market_id == "m1"
