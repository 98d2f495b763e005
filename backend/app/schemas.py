from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class MarketBase(BaseModel):
    local_id: str
    external_id: str | None = None
    title: str
    question: str | None = None
    catalyst: str | None = None
    resolve_date: date
    probability: float
    previous_probability: float | None = None
    change_delta: float = 0.0
    volume: float | str | None = None
    tags: list[str] = Field(default_factory=list)
    last_updated: datetime | None = None
    source: str

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> list[str]:
        if value is None:
            return []
        return list(value)

    @field_validator("change_delta", mode="before")
    @classmethod
    def _default_delta(cls, value: Any) -> float:
        if value is None:
            return 0.0
        return float(value)


class Market(MarketBase):
    model_config = {"from_attributes": True}


class MarketList(BaseModel):
    total: int
    items: list[Market]


class Shock(BaseModel):
    market_id: str
    previous_probability: float
    new_probability: float
    delta: float
    timestamp: datetime


class ShockAlert(BaseModel):
    alert_id: str
    shock_count: int
    window_start: datetime
    window_end: datetime
    shocks: list[Shock] = Field(default_factory=list)
    created_at: datetime

    model_config = {"from_attributes": True}


class ShockAlertList(BaseModel):
    items: list[ShockAlert]


class SyncResponse(BaseModel):
    success: bool = True
    updated: int
    errors: int
    shocks: int
    skipped: int = 0
    alert_id: str | None = None
    timestamp: datetime


class SyncFailure(BaseModel):
    success: bool = False
    error: str


class Health(BaseModel):
    status: str = "ok"
    timestamp: datetime
