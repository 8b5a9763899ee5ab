from __future__ import annotations

from typing import Any

import mongomock
import pytest

from investment_core.cache import ResultCache
from investment_core.catalog.pledges import create_pledge, update_payment_status
from investment_core.catalog.products import create_product
from investment_core.config import Settings
from investment_core.context import AppContext


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        mongo_uri="mongodb://localhost:27017",
        mongo_db="investments_test",
        use_transactions=False,
    )


@pytest.fixture
def ctx(settings: Settings, clock: FakeClock) -> AppContext:
    client = mongomock.MongoClient()
    return AppContext(
        client=client,
        db=client[settings.mongo_db],
        cache=ResultCache(clock=clock),
        settings=settings,
    )


def product_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "productTitle": "Midnight Sessions",
        "description": "A live album recorded over three nights.",
        "artistName": "The Night Owls",
        "category": "Music",
        "genre": "Jazz",
        "totalBudget": 10000,
        "minimumInvestment": 500,
        "tags": ["jazz", "live"],
    }
    payload.update(overrides)
    return payload


def pledge_payload(product_id: str, amount: float, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "investorName": "Asha Rao",
        "email": "asha@ragamail.in",
        "phone": "+919876543210",
        "productId": product_id,
        "investmentAmount": amount,
        "paymentMethod": "UPI",
    }
    payload.update(overrides)
    return payload


def make_product(ctx: AppContext, **overrides: Any) -> dict[str, Any]:
    return create_product(ctx, product_payload(**overrides))


def add_pledge(ctx: AppContext, product_id: str, amount: float, status: str = "completed") -> dict[str, Any]:
    pledge = create_pledge(ctx, pledge_payload(product_id, amount))
    if status == "pending":
        return pledge
    return update_payment_status(ctx, pledge["id"], status)
