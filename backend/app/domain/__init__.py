"""Domain models representing upstream, canonical, and shock data."""

from .models import (
    CanonicalRecord,
    ImportedMarket,
    PriceUpdate,
    Shock,
    ShockAlertData,
    UpstreamEvent,
    UpstreamMarket,
)
from .pricing import CHANGE_EPSILON, compute_price_update

__all__ = [
    "CHANGE_EPSILON",
    "CanonicalRecord",
    "ImportedMarket",
    "PriceUpdate",
    "Shock",
    "ShockAlertData",
    "UpstreamEvent",
    "UpstreamMarket",
    "compute_price_update",
]
