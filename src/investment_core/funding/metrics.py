"""Pure funding formulas shared by every read path.

List, detail and analytics views all call `funding_percentage`; no other
module divides funding by budget.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone


def _finite(value: float | int | None) -> float:
    if value is None:
        return 0.0
    value = float(value)
    return value if math.isfinite(value) else 0.0


def funding_percentage(current_funding: float | int | None, total_budget: float | int | None) -> float:
    """Return funding as a percentage of budget, clamped to [0, 100].

    Over-funded products report 100, a missing or non-positive budget
    reports 0, and the result is rounded to 2 decimal places.

    Args:
        current_funding: Sum of completed pledges (or the stored counter).
        total_budget: Product budget.

    Returns:
        Float in [0, 100]; never NaN or infinite.
    """
    funding = _finite(current_funding)
    budget = _finite(total_budget)
    if budget <= 0:
        return 0.0
    pct = funding / budget * 100.0
    return round(min(max(pct, 0.0), 100.0), 2)


def remaining_amount(current_funding: float | int | None, total_budget: float | int | None) -> float:
    """Return how much of the budget is still open (never negative)."""
    return max(_finite(total_budget) - _finite(current_funding), 0.0)


def calculate_returns(amount: float | int | None, expected_returns: float | int | None) -> float:
    """Return the payout implied by an expected-returns percentage.

    A missing or non-finite percentage yields 0.
    """
    return round(_finite(amount) * _finite(expected_returns) / 100.0, 2)


def funding_status_text(percentage: float) -> str:
    """Return the display label for a funding percentage."""
    if percentage >= 100:
        return "Fully Funded"
    if percentage >= 75:
        return "Almost There"
    if percentage >= 50:
        return "Half Way"
    if percentage >= 25:
        return "Getting Started"
    return "Just Started"


def time_remaining(deadline: datetime | None, now: datetime | None = None) -> str | None:
    """Return human-readable time left until `deadline`.

    Naive datetimes (as returned by the driver) are treated as UTC.

    Args:
        deadline: Funding deadline, or None when the product has none.
        now: Reference time; defaults to the current UTC time.

    Returns:
        None without a deadline, "Expired" once passed, otherwise
        "<n> days left" or "<n> hours left".
    """
    if deadline is None:
        return None
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    diff = (deadline - now).total_seconds()
    if diff <= 0:
        return "Expired"

    days = int(diff // 86400)
    if days > 0:
        return f"{days} days left"
    return f"{int(diff // 3600)} hours left"
