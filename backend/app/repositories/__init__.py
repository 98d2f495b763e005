"""Repository abstractions for database interactions."""

from .alert_repository import ShockAlertRepository
from .batching import BatchedWriter
from .market_repository import MarketRepository

__all__ = [
    "BatchedWriter",
    "MarketRepository",
    "ShockAlertRepository",
]
