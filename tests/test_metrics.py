from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from investment_core.funding.metrics import (
    calculate_returns,
    funding_percentage,
    funding_status_text,
    remaining_amount,
    time_remaining,
)


def test_funding_percentage_basic() -> None:
    assert funding_percentage(6000, 10000) == 60.0


def test_funding_percentage_clamps_over_funding() -> None:
    assert funding_percentage(12000, 10000) == 100.0


@pytest.mark.parametrize("budget", [0, -5, None, float("nan"), float("inf")])
def test_funding_percentage_bad_budget_is_zero(budget: float | None) -> None:
    pct = funding_percentage(500, budget)
    assert pct == 0.0
    assert math.isfinite(pct)


def test_funding_percentage_negative_funding_is_zero() -> None:
    assert funding_percentage(-100, 1000) == 0.0


def test_funding_percentage_rounds_to_two_places() -> None:
    assert funding_percentage(1, 3) == 33.33


def test_remaining_amount_never_negative() -> None:
    assert remaining_amount(4000, 10000) == 6000
    assert remaining_amount(12000, 10000) == 0


def test_funding_status_text_thresholds() -> None:
    assert funding_status_text(100) == "Fully Funded"
    assert funding_status_text(80) == "Almost There"
    assert funding_status_text(50) == "Half Way"
    assert funding_status_text(25) == "Getting Started"
    assert funding_status_text(3) == "Just Started"


def test_time_remaining() -> None:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert time_remaining(None, now) is None
    assert time_remaining(now - timedelta(minutes=1), now) == "Expired"
    assert time_remaining(now + timedelta(days=3, hours=2), now) == "3 days left"
    assert time_remaining(now + timedelta(hours=5, minutes=10), now) == "5 hours left"


def test_time_remaining_treats_naive_as_utc() -> None:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    naive = datetime(2026, 1, 3, 1, 0)
    assert time_remaining(naive, now) == "2 days left"


def test_calculate_returns() -> None:
    assert calculate_returns(5000, 12.5) == 625.0
    assert calculate_returns(1000, None) == 0.0
    assert calculate_returns(1000, 0) == 0.0
    assert calculate_returns(333.33, 10) == 33.33
