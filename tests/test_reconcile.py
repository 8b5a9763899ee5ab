from __future__ import annotations

from typing import Any

import dask.dataframe as dd
import pandas as pd
from bson import ObjectId

from investment_core.catalog.pledges import update_payment_status
from investment_core.funding.reconcile import (
    detect_counter_drift,
    funding_totals_by_product,
    reconcile_funding_counters,
)

from tests.conftest import add_pledge, make_product


def test_funding_totals_by_product() -> None:
    pdf = pd.DataFrame(
        {
            "productId": ["a", "a", "b"],
            "investmentAmount": [100.0, 250.5, 40.0],
        }
    )
    totals = funding_totals_by_product(dd.from_pandas(pdf, npartitions=2))
    by_id = totals.set_index("productId")

    assert by_id.loc["a", "actualFunding"] == 350.5
    assert by_id.loc["a", "actualInvestors"] == 2
    assert by_id.loc["b", "actualInvestors"] == 1


def test_funding_totals_empty() -> None:
    empty = dd.from_pandas(pd.DataFrame(columns=["productId", "investmentAmount"]), npartitions=1)
    totals = funding_totals_by_product(empty)
    assert totals.empty
    assert list(totals.columns) == ["productId", "actualFunding", "actualInvestors"]


def test_detect_counter_drift() -> None:
    products = pd.DataFrame(
        {
            "_id": ["a", "b", "c", "d"],
            "totalBudget": [1000, 1000, 1000, 1000],
            "pledgedTotal": [300.0, 1500.0, 50.0, None],
            "currentFunding": [300, 1000, 50, 0],
            "totalInvestors": [1, 2, 1, 0],
        }
    )
    totals = pd.DataFrame(
        {
            "productId": ["a", "b", "c"],
            "actualFunding": [300.0, 1500.0, 80.0],
            "actualInvestors": [1, 2, 2],
        }
    )
    drift = detect_counter_drift(products, totals)
    by_id = drift.set_index("productId")

    # over-funded product "b" keeps the uncapped sum and a capped counter
    assert sorted(by_id.index) == ["c", "d"]
    assert by_id.loc["c", "expectedPledged"] == 80.0
    assert by_id.loc["c", "expectedFunding"] == 80.0
    assert by_id.loc["c", "expectedInvestors"] == 2
    # a missing pledged total is always backfilled
    assert by_id.loc["d", "expectedPledged"] == 0.0


def test_reconcile_reports_and_applies(ctx: Any) -> None:
    good = make_product(ctx, productTitle="Good")
    bad = make_product(ctx, productTitle="Bad")
    add_pledge(ctx, good["id"], 1000)
    add_pledge(ctx, bad["id"], 2000)
    ctx.db.products.update_one(
        {"_id": ObjectId(bad["id"])}, {"$set": {"currentFunding": 9999, "totalInvestors": 7}}
    )

    report = reconcile_funding_counters(ctx.db)
    assert report.products_checked == 2
    assert [d["productId"] for d in report.drifted] == [bad["id"]]
    assert report.corrected == 0

    report = reconcile_funding_counters(ctx.db, apply=True)
    assert report.corrected == 1
    doc = ctx.db.products.find_one({"_id": ObjectId(bad["id"])})
    assert doc["currentFunding"] == 2000
    assert doc["totalInvestors"] == 1
    assert doc["pledgedTotal"] == 2000

    assert reconcile_funding_counters(ctx.db).drifted == []


def test_refund_after_over_funding_leaves_no_drift(ctx: Any) -> None:
    p = make_product(ctx, totalBudget=10000)
    add_pledge(ctx, p["id"], 8000)
    refunded = add_pledge(ctx, p["id"], 5000)
    update_payment_status(ctx, refunded["id"], "refunded")

    doc = ctx.db.products.find_one({"_id": ObjectId(p["id"])})
    assert doc["pledgedTotal"] == 8000
    assert doc["currentFunding"] == 8000
    assert reconcile_funding_counters(ctx.db).drifted == []
