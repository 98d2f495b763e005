"""Change detection applied whenever a stored probability is refreshed."""

from __future__ import annotations

from .models import PriceUpdate

CHANGE_EPSILON = 0.001


def compute_price_update(
    *,
    stored_probability: float | None,
    stored_previous: float | None,
    stored_delta: float | None,
    new_probability: float,
    epsilon: float = CHANGE_EPSILON,
) -> PriceUpdate:
    """Return the price fields to persist for ``new_probability``.

    ``previous_probability`` only advances when the move exceeds ``epsilon``;
    smaller moves keep the last genuine change record intact.
    """

    baseline = stored_probability if stored_probability is not None else 0.0
    delta = new_probability - baseline
    if abs(delta) > epsilon:
        return PriceUpdate(
            probability=new_probability,
            previous_probability=stored_probability,
            change_delta=round(delta, 4),
            changed=True,
        )
    return PriceUpdate(
        probability=new_probability,
        previous_probability=stored_previous,
        change_delta=stored_delta if stored_delta is not None else 0.0,
        changed=False,
    )
