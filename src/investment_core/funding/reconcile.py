"""Audit of the denormalized funding counters kept on products.

`pledgedTotal`, `currentFunding` and `totalInvestors` on a product are only
ever moved by atomic updates when a pledge completes or is refunded. This job
recomputes them from completed pledges, reports drift and optionally corrects
it. A product without `pledgedTotal` (stored before the field existed) always
counts as drifted so the correction backfills it.

Expectations:
- Pledges are loaded as a Dask DataFrame with `productId` and
  `investmentAmount` columns (completed pledges only).
- Products are loaded as a pandas DataFrame with `_id`, `totalBudget`,
  `pledgedTotal`, `currentFunding` and `totalInvestors`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import numpy as np
import pandas as pd
from pymongo.database import Database

from investment_core.db import PLEDGES, PRODUCTS, bulk_set, load_collection_to_ddf, store_guard

log = logging.getLogger(__name__)

# amounts are stored with 2 decimals; anything closer is float noise
TOLERANCE = 0.005


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation run.

    Attributes:
        products_checked: Number of products compared.
        drifted: One dict per product whose counters disagree.
        corrected: Number of products rewritten (0 unless applied).
    """
    products_checked: int = 0
    drifted: list[dict[str, Any]] = field(default_factory=list)
    corrected: int = 0


def funding_totals_by_product(ddf: Any) -> pd.DataFrame:
    """Sum completed pledges per product.

    Args:
        ddf: Dask DataFrame of completed pledges with `productId` and
            `investmentAmount` columns.

    Returns:
        pandas DataFrame with columns `productId` (str), `actualFunding`,
        `actualInvestors`.
    """
    columns = ["productId", "actualFunding", "actualInvestors"]
    if "productId" not in ddf.columns or int(ddf.shape[0].compute()) == 0:
        return pd.DataFrame(columns=columns)

    x = ddf.assign(productId=ddf["productId"].astype(str))
    grouped = (
        x.groupby("productId")["investmentAmount"]
        .agg(["sum", "count"])
        .reset_index()
        .rename(columns={"sum": "actualFunding", "count": "actualInvestors"})
    )
    pdf = grouped.compute()
    if pdf.empty:
        return pd.DataFrame(columns=columns)
    pdf["actualFunding"] = pdf["actualFunding"].astype(float).round(2)
    pdf["actualInvestors"] = pdf["actualInvestors"].astype(int)
    return pdf[columns].reset_index(drop=True)


def detect_counter_drift(products: pd.DataFrame, totals: pd.DataFrame) -> pd.DataFrame:
    """Compare stored counters with recomputed totals.

    `pledgedTotal` must equal the completed sum; `currentFunding` must equal
    that sum capped at the budget.

    Args:
        products: pandas DataFrame of products (see module docstring).
        totals: Output of `funding_totals_by_product`.

    Returns:
        DataFrame of drifted products with columns `_id`, `productId`,
        `pledgedTotal`, `expectedPledged`, `currentFunding`,
        `expectedFunding`, `totalInvestors`, `expectedInvestors`.
    """
    out_cols = [
        "_id", "productId", "pledgedTotal", "expectedPledged",
        "currentFunding", "expectedFunding", "totalInvestors", "expectedInvestors",
    ]
    if products.empty:
        return pd.DataFrame(columns=out_cols)

    p = products.copy()
    p["productId"] = p["_id"].astype(str)
    for col in ("totalBudget", "currentFunding", "totalInvestors"):
        if col not in p.columns:
            p[col] = 0
        p[col] = pd.to_numeric(p[col], errors="coerce").fillna(0)
    # missing stays NaN so it never compares equal
    p["pledgedTotal"] = pd.to_numeric(p.get("pledgedTotal", np.nan), errors="coerce")

    t = totals.assign(productId=totals["productId"].astype(str))
    merged = p.merge(t, on="productId", how="left")
    merged["actualFunding"] = pd.to_numeric(merged["actualFunding"], errors="coerce").fillna(0.0)
    merged["actualInvestors"] = pd.to_numeric(merged["actualInvestors"], errors="coerce").fillna(0)

    merged["expectedPledged"] = merged["actualFunding"].round(2)
    merged["expectedFunding"] = np.minimum(
        merged["actualFunding"], merged["totalBudget"].clip(lower=0)
    ).round(2)
    merged["expectedInvestors"] = merged["actualInvestors"].astype(int)

    pledged_off = ~((merged["pledgedTotal"] - merged["expectedPledged"]).abs() <= TOLERANCE)
    drift = (
        pledged_off
        | ((merged["currentFunding"] - merged["expectedFunding"]).abs() > TOLERANCE)
        | (merged["totalInvestors"].astype(int) != merged["expectedInvestors"])
    )
    return merged.loc[drift, out_cols].reset_index(drop=True)


def reconcile_funding_counters(db: Database[dict[str, Any]], apply: bool = False) -> ReconcileReport:
    """Recompute funding counters for every product and report drift.

    Args:
        db: Database holding both collections.
        apply: Rewrite drifted counters with the recomputed values.

    Returns:
        ReconcileReport summarizing the run.
    """
    with store_guard("reconcile_funding_counters"):
        ddf = load_collection_to_ddf(
            db[PLEDGES],
            {"paymentStatus": "completed"},
            {"_id": False, "productId": True, "investmentAmount": True},
            columns=["productId", "investmentAmount"],
        )
        totals = funding_totals_by_product(ddf)

        products = pd.DataFrame(
            list(
                db[PRODUCTS].find(
                    {}, {"totalBudget": 1, "pledgedTotal": 1, "currentFunding": 1, "totalInvestors": 1}
                )
            )
        )
        drift = detect_counter_drift(products, totals)

        report = ReconcileReport(products_checked=len(products))
        for row in drift.to_dict("records"):
            report.drifted.append(
                {
                    "productId": row["productId"],
                    "pledgedTotal": None if pd.isna(row["pledgedTotal"]) else float(row["pledgedTotal"]),
                    "expectedPledged": float(row["expectedPledged"]),
                    "currentFunding": float(row["currentFunding"]),
                    "expectedFunding": float(row["expectedFunding"]),
                    "totalInvestors": int(row["totalInvestors"]),
                    "expectedInvestors": int(row["expectedInvestors"]),
                }
            )
            log.warning(
                "Counter drift on %s: pledged %s != %.2f, funding %.2f != %.2f, investors %d != %d",
                row["productId"],
                row["pledgedTotal"],
                row["expectedPledged"],
                row["currentFunding"],
                row["expectedFunding"],
                row["totalInvestors"],
                row["expectedInvestors"],
            )

        if apply and not drift.empty:
            now = datetime.now(timezone.utc)
            report.corrected = bulk_set(
                db[PRODUCTS],
                (
                    (
                        row["_id"],
                        {
                            "pledgedTotal": float(row["expectedPledged"]),
                            "currentFunding": float(row["expectedFunding"]),
                            "totalInvestors": int(row["expectedInvestors"]),
                            "updatedAt": now,
                        },
                    )
                    for row in drift.to_dict("records")
                ),
            )

    log.info(
        "Reconciliation: %d products checked, %d drifted, %d corrected",
        report.products_checked,
        len(report.drifted),
        report.corrected,
    )
    return report
