"""Windowed detection of large probability moves."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from loguru import logger

from app.domain import Shock, ShockAlertData

SHOCK_THRESHOLD = 0.05
SHOCK_COUNT_THRESHOLD = 5
SHOCK_WINDOW = timedelta(minutes=15)
MAX_RETAINED_SHOCKS = 10_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShockDetector:
    """Flags single large moves and escalates when they cluster in time.

    State is a time-ordered deque owned by the instance; entries only leave it
    by aging out of the window (or by the deque bound).
    """

    def __init__(
        self,
        *,
        threshold: float = SHOCK_THRESHOLD,
        alert_count: int = SHOCK_COUNT_THRESHOLD,
        window: timedelta = SHOCK_WINDOW,
        max_retained: int = MAX_RETAINED_SHOCKS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.threshold = threshold
        self.alert_count = alert_count
        self.window = window
        self._clock = clock
        self._shocks: deque[Shock] = deque(maxlen=max_retained)
        self._alert_active = False

    @property
    def shocks(self) -> tuple[Shock, ...]:
        return tuple(self._shocks)

    def _prune_before(self, cutoff: datetime) -> None:
        while self._shocks and self._shocks[0].timestamp < cutoff:
            self._shocks.popleft()

    def detect_shock(
        self, market_id: str, previous_probability: float, new_probability: float
    ) -> Shock | None:
        # Rounded so 0.40 -> 0.45 counts despite binary float noise.
        delta = round(abs(new_probability - previous_probability), 10)
        if delta < self.threshold:
            return None

        now = self._clock()
        shock = Shock(
            market_id=market_id,
            previous_probability=previous_probability,
            new_probability=new_probability,
            delta=delta,
            timestamp=now,
        )
        self._shocks.append(shock)
        self._prune_before(now - self.window)
        logger.info(
            "Market shock detected: {} moved {:.2f}% ({} -> {})",
            market_id,
            delta * 100,
            previous_probability,
            new_probability,
        )
        return shock

    def check_alert(self) -> ShockAlertData | None:
        """Return an alert when the window holds enough shocks for a new crossing.

        The crossing stays open until :meth:`acknowledge_alert` is called, so an
        alert that could not be stored is offered again on the next check.
        """

        now = self._clock()
        window_start = now - self.window
        window_shocks = [shock for shock in self._shocks if shock.timestamp >= window_start]

        if len(window_shocks) < self.alert_count:
            self._alert_active = False
            return None
        if self._alert_active:
            return None

        alert = ShockAlertData(
            alert_id=f"shock-{int(now.timestamp() * 1000)}",
            shock_count=len(window_shocks),
            window_start=window_shocks[0].timestamp,
            window_end=now,
            shocks=window_shocks,
            created_at=now,
        )
        logger.warning(
            "Shock alert: {} shocks across {} markets in {:.1f} minutes",
            alert.shock_count,
            len({shock.market_id for shock in window_shocks}),
            (alert.window_end - alert.window_start).total_seconds() / 60,
        )
        return alert

    def acknowledge_alert(self) -> None:
        """Mark the current crossing as delivered; no further alerts until it re-arms."""
        self._alert_active = True

    def cleanup(self) -> None:
        self._prune_before(self._clock() - 2 * self.window)


__all__ = [
    "MAX_RETAINED_SHOCKS",
    "SHOCK_COUNT_THRESHOLD",
    "SHOCK_THRESHOLD",
    "SHOCK_WINDOW",
    "ShockDetector",
]
