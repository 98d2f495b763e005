"""Shock alert persistence."""

from __future__ import annotations

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from app.domain import ShockAlertData
from app.models import ShockAlertRecord


class ShockAlertRepository:
    """Write-once storage for detected shock clusters."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create_alert(self, alert: ShockAlertData) -> ShockAlertRecord:
        record = ShockAlertRecord(
            alert_id=alert.alert_id,
            shock_count=alert.shock_count,
            window_start=alert.window_start,
            window_end=alert.window_end,
            shocks=[shock.to_dict() for shock in alert.shocks],
            created_at=alert.created_at,
        )
        self._session.add(record)
        return record

    def list_alerts(self, *, limit: int = 20) -> list[ShockAlertRecord]:
        query = (
            select(ShockAlertRecord)
            .order_by(desc(ShockAlertRecord.created_at))
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())


__all__ = ["ShockAlertRepository"]
