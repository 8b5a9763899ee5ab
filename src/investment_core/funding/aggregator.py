"""Funding statistics derived from completed pledges.

Every figure here is recomputed from the `pledges` collection; the
denormalized `currentFunding` / `totalInvestors` counters on products are
never read (they are audited separately by `reconcile`). Only pledges with
`paymentStatus == "completed"` contribute.

Driver failures surface as `StoreUnavailable`; nothing is retried here.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from bson import ObjectId
from pymongo.database import Database

from investment_core.db import PLEDGES, PRODUCTS, parse_object_id, store_guard
from investment_core.funding.metrics import funding_percentage
from investment_core.models import PRODUCT_STATUSES, ListStats, ProductStats

log = logging.getLogger(__name__)

COMPLETED = "completed"
RECENT_PLEDGES = 5
TOP_FUNDED = 10


def _money(value: Any) -> float:
    return round(float(value or 0), 2)


class FundingAggregator:
    """Compute per-product and global funding statistics.

    Args:
        db: Database holding the `products` and `pledges` collections.
    """

    def __init__(self, db: Database[dict[str, Any]]) -> None:
        self._products = db[PRODUCTS]
        self._pledges = db[PLEDGES]

    # -------------------------------------------------
    # Helpers
    # -------------------------------------------------
    def completed_totals(
        self,
        product_ids: Iterable[ObjectId] | None = None,
    ) -> dict[ObjectId, tuple[int, float]]:
        """Group completed pledges by product in one aggregation.

        Args:
            product_ids: Restrict to these products; None means all.

        Returns:
            Mapping `product_id -> (investor_count, amount_sum)`. Products
            without completed pledges are absent.
        """
        match: dict[str, Any] = {"paymentStatus": COMPLETED}
        if product_ids is not None:
            match["productId"] = {"$in": list(product_ids)}

        pipeline = [
            {"$match": match},
            {
                "$group": {
                    "_id": "$productId",
                    "totalInvestors": {"$sum": 1},
                    "totalAmount": {"$sum": "$investmentAmount"},
                }
            },
        ]
        return {
            row["_id"]: (int(row["totalInvestors"]), _money(row["totalAmount"]))
            for row in self._pledges.aggregate(pipeline)
        }

    # -------------------------------------------------
    # Single product
    # -------------------------------------------------
    def compute_product_stats(self, product_id: Any) -> ProductStats:
        """Return completed-pledge statistics for one product.

        A product without completed pledges yields all zeros and no recent
        pledges.
        """
        oid = parse_object_id(product_id, "productId")
        match = {"productId": oid, "paymentStatus": COMPLETED}
        pipeline = [
            {"$match": match},
            {
                "$group": {
                    "_id": None,
                    "totalInvestors": {"$sum": 1},
                    "totalAmount": {"$sum": "$investmentAmount"},
                    "avgInvestment": {"$avg": "$investmentAmount"},
                    "minInvestment": {"$min": "$investmentAmount"},
                    "maxInvestment": {"$max": "$investmentAmount"},
                }
            },
        ]

        with store_guard("compute_product_stats"):
            rows = list(self._pledges.aggregate(pipeline))
            if not rows:
                return ProductStats()

            recent_cursor = (
                self._pledges.find(
                    match,
                    {"investorName": 1, "investmentAmount": 1, "investmentDate": 1},
                )
                .sort([("investmentDate", -1), ("_id", -1)])
                .limit(RECENT_PLEDGES)
            )
            recent = [
                {
                    "id": str(doc["_id"]),
                    "investorName": doc.get("investorName"),
                    "investmentAmount": _money(doc.get("investmentAmount")),
                    "investmentDate": doc.get("investmentDate"),
                }
                for doc in recent_cursor
            ]

        row = rows[0]
        return ProductStats(
            total_investors=int(row["totalInvestors"]),
            total_amount=_money(row["totalAmount"]),
            avg_investment=_money(row["avgInvestment"]),
            min_investment=_money(row["minInvestment"]),
            max_investment=_money(row["maxInvestment"]),
            recent_pledges=recent,
        )

    # -------------------------------------------------
    # Lists
    # -------------------------------------------------
    def compute_list_stats(
        self,
        product_ids: Iterable[Any],
        budgets: dict[ObjectId, float] | None = None,
    ) -> dict[ObjectId, ListStats]:
        """Return list-view funding figures for many products at once.

        Uses one grouped aggregation over pledges plus, unless `budgets` is
        supplied by a caller that already holds the product documents, one
        query for the budgets. Never one query per product.

        Args:
            product_ids: Products to compute for.
            budgets: Optional `product_id -> totalBudget` mapping.

        Returns:
            Mapping `product_id -> ListStats` covering every requested id.
        """
        ids = [parse_object_id(pid, "productId") for pid in product_ids]
        if not ids:
            return {}

        with store_guard("compute_list_stats"):
            if budgets is None:
                budgets = {
                    doc["_id"]: doc.get("totalBudget", 0)
                    for doc in self._products.find({"_id": {"$in": ids}}, {"totalBudget": 1})
                }
            totals = self.completed_totals(ids)

        out: dict[ObjectId, ListStats] = {}
        for oid in ids:
            investors, amount = totals.get(oid, (0, 0.0))
            out[oid] = ListStats(
                total_investors=investors,
                actual_funding=amount,
                funding_percentage=funding_percentage(amount, budgets.get(oid, 0)),
            )
        return out

    # -------------------------------------------------
    # Global analytics
    # -------------------------------------------------
    def _overview(self) -> dict[str, Any]:
        pipeline = [
            {
                "$group": {
                    "_id": {"active": "$isActive", "status": "$productStatus"},
                    "count": {"$sum": 1},
                    "budget": {"$sum": "$totalBudget"},
                }
            }
        ]
        total = active = 0
        budget_sum = 0.0
        by_status = {status: 0 for status in PRODUCT_STATUSES}

        for row in self._products.aggregate(pipeline):
            count = int(row["count"])
            total += count
            if row["_id"].get("active") is not True:
                continue
            active += count
            budget_sum += float(row["budget"] or 0)
            status = row["_id"].get("status")
            if status in by_status:
                by_status[status] += count

        return {
            "totalProducts": total,
            "activeProducts": active,
            "fundingProducts": by_status["funding"],
            "inProductionProducts": by_status["in-production"],
            "completedProducts": by_status["completed"],
            "cancelledProducts": by_status["cancelled"],
            "productsByStatus": by_status,
            "totalBudgetSum": _money(budget_sum),
            "avgBudget": _money(budget_sum / active) if active else 0.0,
        }

    def _investments(self) -> dict[str, Any]:
        pipeline = [
            {"$match": {"paymentStatus": COMPLETED}},
            {
                "$group": {
                    "_id": None,
                    "totalInvestments": {"$sum": "$investmentAmount"},
                    "totalInvestors": {"$sum": 1},
                }
            },
        ]
        rows = list(self._pledges.aggregate(pipeline))
        if not rows:
            return {"totalInvestments": 0.0, "totalInvestors": 0, "avgInvestment": 0.0}

        amount = float(rows[0]["totalInvestments"] or 0)
        count = int(rows[0]["totalInvestors"])
        return {
            "totalInvestments": _money(amount),
            "totalInvestors": count,
            "avgInvestment": _money(amount / count) if count else 0.0,
        }

    def _category_distribution(self) -> list[dict[str, Any]]:
        pipeline = [
            {"$match": {"isActive": True}},
            {
                "$group": {
                    "_id": "$category",
                    "count": {"$sum": 1},
                    "totalBudget": {"$sum": "$totalBudget"},
                }
            },
        ]
        rows = [
            {
                "category": row["_id"],
                "count": int(row["count"]),
                "totalBudget": _money(row["totalBudget"]),
            }
            for row in self._products.aggregate(pipeline)
        ]
        rows.sort(key=lambda r: (-r["count"], str(r["category"])))
        return rows

    def _top_funded(self) -> list[dict[str, Any]]:
        products = list(
            self._products.find(
                {"isActive": True},
                {"productTitle": 1, "slug": 1, "category": 1, "totalBudget": 1},
            ).sort("_id", 1)
        )
        totals = self.completed_totals([p["_id"] for p in products])

        ranked = []
        for p in products:
            investors, amount = totals.get(p["_id"], (0, 0.0))
            ranked.append(
                {
                    "id": str(p["_id"]),
                    "productTitle": p.get("productTitle"),
                    "slug": p.get("slug"),
                    "category": p.get("category"),
                    "totalBudget": _money(p.get("totalBudget")),
                    "actualFunding": amount,
                    "totalInvestors": investors,
                    "fundingPercentage": funding_percentage(amount, p.get("totalBudget")),
                }
            )
        # stable sort keeps _id order among equal percentages
        ranked.sort(key=lambda r: r["fundingPercentage"], reverse=True)
        return ranked[:TOP_FUNDED]

    def compute_global_analytics(self) -> dict[str, Any]:
        """Return platform-wide funding analytics.

        Returns:
            Dict with `overview` (product counts by status, active budget
            total/average), `investments` (completed-pledge volume, count,
            average), `categoryDistribution` (active products per category,
            most populous first) and `topFundedProjects` (ten active products
            with the highest funding percentage, ties in id order).
        """
        with store_guard("compute_global_analytics"):
            analytics = {
                "overview": self._overview(),
                "investments": self._investments(),
                "categoryDistribution": self._category_distribution(),
                "topFundedProjects": self._top_funded(),
            }
        log.info(
            "Computed analytics: %d products, %d completed pledges",
            analytics["overview"]["totalProducts"],
            analytics["investments"]["totalInvestors"],
        )
        return analytics
