from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class MarketSource(str, Enum):
    BULK_IMPORT = "bulk_import"
    MANUAL = "manual"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarketRecord(Base):
    __tablename__ = "markets"

    local_id: Mapped[str] = mapped_column(String, primary_key=True)
    external_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    question: Mapped[str | None] = mapped_column(Text, nullable=True)
    catalyst: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    resolve_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    probability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    previous_probability: Mapped[float | None] = mapped_column(Float, nullable=True)
    change_delta: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    volume: Mapped[Any] = mapped_column(JSON, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    source: Mapped[str] = mapped_column(String, nullable=False, default=MarketSource.BULK_IMPORT.value)
    extra_fields: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class ShockAlertRecord(Base):
    __tablename__ = "shock_alerts"

    alert_id: Mapped[str] = mapped_column(String, primary_key=True)
    shock_count: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    shocks: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
