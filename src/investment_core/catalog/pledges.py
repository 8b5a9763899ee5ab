"""Pledge operations: creation and payment-status transitions.

A product's denormalized counters move only here, when a pledge enters
`completed` (or leaves it through a refund). `pledgedTotal` holds the uncapped
sum of completed pledges; `currentFunding` is derived from it, capped at
`totalBudget`, inside the same single-document update, so a refund after
over-funding lands back on the true figure.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.collection import Collection

from investment_core.context import AppContext
from investment_core.db import PLEDGES, PRODUCTS, parse_object_id, store_guard, to_public, transaction
from investment_core.errors import NotFoundError, ValidationError
from investment_core.funding.metrics import calculate_returns
from investment_core.models import INVESTMENT_STATUSES, PAYMENT_STATUSES, KycUpdate, PledgeCreate
from investment_core.query import pagination_meta

log = logging.getLogger(__name__)

# no transition leads back to pending
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "completed", "failed", "cancelled"}),
    "processing": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset({"refunded"}),
    "failed": frozenset(),
    "refunded": frozenset(),
    "cancelled": frozenset(),
}

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_transaction_id() -> str:
    """Return `TXN<epoch-ms><9 upper-case alphanumerics>`."""
    suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(9))
    return f"TXN{int(time.time() * 1000)}{suffix}"


def create_pledge(ctx: AppContext, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validate and store a new pledge in `pending` state.

    Raises:
        ValidationError: invalid fields, a product not accepting
            investments, or an amount below the product's minimum.
        NotFoundError: the product does not exist or is inactive.
    """
    try:
        pledge = PledgeCreate.model_validate(dict(payload))
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e

    product_oid = parse_object_id(pledge.product_id, "productId")

    with store_guard("create_pledge"):
        product = ctx.db[PRODUCTS].find_one(
            {"_id": product_oid},
            {"isActive": 1, "fundingStatus": 1, "minimumInvestment": 1},
        )
    if product is None or not product.get("isActive", False):
        raise NotFoundError("Investment product not found")
    if product.get("fundingStatus", "active") != "active":
        raise ValidationError("This product is not accepting investments")

    minimum = float(product.get("minimumInvestment") or 0)
    if pledge.investment_amount < minimum:
        raise ValidationError(
            "Investment amount is below the product minimum",
            [f"investmentAmount: must be at least {minimum:g}"],
        )

    now = _now()
    doc = {
        **pledge.model_dump(by_alias=True),
        "productId": product_oid,
        "paymentStatus": "pending",
        "transactionId": "",
        "paymentDate": None,
        "createdAt": now,
        "updatedAt": now,
    }

    with store_guard("create_pledge"):
        ctx.db[PLEDGES].insert_one(doc)

    ctx.cache.invalidate_all()
    log.info("Created pending pledge %s on product %s", doc["_id"], product_oid)
    return to_public(doc)


def _apply_funding_delta(
    products: Collection[dict[str, Any]],
    product_id: Any,
    amount: float,
    investors: int,
    session: ClientSession | None,
) -> None:
    # one pipeline update: no reader sees the uncapped value in currentFunding
    pipeline = [
        {
            "$set": {
                "pledgedTotal": {
                    "$max": [
                        0,
                        {
                            "$add": [
                                {"$ifNull": ["$pledgedTotal", {"$ifNull": ["$currentFunding", 0]}]},
                                amount,
                            ]
                        },
                    ]
                },
                "totalInvestors": {
                    "$max": [0, {"$add": [{"$ifNull": ["$totalInvestors", 0]}, investors]}]
                },
                "updatedAt": _now(),
            }
        },
        {
            "$set": {
                "currentFunding": {
                    "$min": ["$pledgedTotal", {"$max": [{"$ifNull": ["$totalBudget", 0]}, 0]}]
                }
            }
        },
    ]
    res = products.update_one({"_id": product_id}, pipeline, session=session)
    if res.matched_count == 0:
        # product hard-deleted underneath the pledge; nothing to keep in sync
        log.warning("Funding update skipped: product %s no longer exists", product_id)


def update_payment_status(
    ctx: AppContext,
    pledge_id: Any,
    status: str,
    transaction_id: str | None = None,
    gateway_transaction_id: str | None = None,
) -> dict[str, Any]:
    """Move a pledge to a new payment status and keep product counters in step.

    The status change is a compare-and-set on the status read beforehand, so
    two concurrent completions of one pledge cannot both count.

    Args:
        ctx: Application context.
        pledge_id: Pledge id.
        status: Target payment status.
        transaction_id: Payment reference; generated on completion if the
            pledge has none.
        gateway_transaction_id: Optional gateway reference.

    Returns:
        The updated pledge.

    Raises:
        ValidationError: unknown status, disallowed transition, or the
            pledge changed status concurrently.
        NotFoundError: no such pledge.
    """
    if status not in PAYMENT_STATUSES:
        raise ValidationError(
            "Invalid payment status",
            [f"paymentStatus: must be one of {', '.join(PAYMENT_STATUSES)}"],
        )

    oid = parse_object_id(pledge_id, "id")
    pledges = ctx.db[PLEDGES]

    with store_guard("update_payment_status"):
        current = pledges.find_one({"_id": oid})
    if current is None:
        raise NotFoundError("Pledge not found")

    previous = current.get("paymentStatus", "pending")
    if status not in ALLOWED_TRANSITIONS.get(previous, frozenset()):
        raise ValidationError(f"Cannot change payment status from {previous} to {status}")

    now = _now()
    changes: dict[str, Any] = {"paymentStatus": status, "updatedAt": now}
    if transaction_id:
        changes["transactionId"] = transaction_id.strip()
    if gateway_transaction_id:
        changes["gatewayTransactionId"] = gateway_transaction_id.strip()
    if status == "completed":
        if not changes.get("transactionId") and not current.get("transactionId"):
            changes["transactionId"] = generate_transaction_id()
        changes["paymentDate"] = now

    amount = float(current.get("investmentAmount") or 0)

    with store_guard("update_payment_status"):
        with transaction(ctx.client, ctx.settings.use_transactions) as session:
            updated = pledges.find_one_and_update(
                {"_id": oid, "paymentStatus": previous},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if updated is None:
                raise ValidationError("Pledge status changed concurrently; reload and retry")

            if status == "completed":
                _apply_funding_delta(ctx.db[PRODUCTS], current["productId"], amount, 1, session)
            elif previous == "completed" and status == "refunded":
                _apply_funding_delta(ctx.db[PRODUCTS], current["productId"], -amount, -1, session)

    ctx.cache.invalidate_all()
    log.info("Pledge %s: %s -> %s", oid, previous, status)
    return to_public(updated)


def _page_window(ctx: AppContext, page: Any, limit: Any) -> tuple[int, int]:
    # garbage paging falls back instead of failing the request
    try:
        page = max(1, int(page))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = 0
    if limit <= 0:
        limit = ctx.settings.default_page_limit
    return page, min(limit, ctx.settings.max_page_limit)


def _pledge_item(doc: Mapping[str, Any]) -> dict[str, Any]:
    item = to_public(dict(doc))
    item["expectedReturnAmount"] = calculate_returns(
        doc.get("investmentAmount"), doc.get("expectedReturns")
    )
    return item


def list_product_pledges(
    ctx: AppContext,
    product_id: Any,
    status: str | None = None,
    page: Any = 1,
    limit: Any = None,
) -> dict[str, Any]:
    """Return one page of a product's pledges, newest first (admin view)."""
    oid = parse_object_id(product_id, "productId")
    if status is not None and status not in PAYMENT_STATUSES:
        raise ValidationError("Invalid payment status")

    page, limit = _page_window(ctx, page, limit)

    query: dict[str, Any] = {"productId": oid}
    if status:
        query["paymentStatus"] = status

    with store_guard("list_product_pledges"):
        total = ctx.db[PLEDGES].count_documents(query)
        docs = list(
            ctx.db[PLEDGES]
            .find(query)
            .sort([("investmentDate", -1), ("_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )

    return {
        "success": True,
        "pledges": [_pledge_item(d) for d in docs],
        "pagination": pagination_meta(page, limit, total).to_dict(),
    }


# =========================================================
# INVESTORS
# =========================================================

def update_kyc(
    ctx: AppContext,
    pledge_id: Any,
    status: str,
    documents: list[Mapping[str, Any]] | None = None,
) -> dict[str, Any]:
    """Record a KYC review on a pledge.

    Args:
        ctx: Application context.
        pledge_id: Pledge id.
        status: New KYC status.
        documents: Replacement document list; the stored list is kept when
            omitted.

    Raises:
        ValidationError: unknown status or malformed documents.
        NotFoundError: no such pledge.
    """
    data: dict[str, Any] = {"kycStatus": status}
    if documents is not None:
        data["kycDocuments"] = documents
    try:
        review = KycUpdate.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e

    oid = parse_object_id(pledge_id, "id")
    changes = {**review.model_dump(by_alias=True, exclude_none=True), "updatedAt": _now()}

    with store_guard("update_kyc"):
        updated = ctx.db[PLEDGES].find_one_and_update(
            {"_id": oid},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise NotFoundError("Pledge not found")

    ctx.cache.invalidate_all()
    log.info("Pledge %s: KYC %s", oid, review.kyc_status)
    return to_public(updated)


def search_investors(
    ctx: AppContext,
    query: str | None = None,
    product_id: Any = None,
    payment_status: str | None = None,
    investment_status: str | None = None,
    city: str | None = None,
    state: str | None = None,
    page: Any = 1,
    limit: Any = None,
) -> dict[str, Any]:
    """Return one page of pledges matching an investor search, newest first.

    `query` matches investor name, email or phone as a case-insensitive
    substring; `city` and `state` match the address the same way.

    Raises:
        ValidationError: unknown status filter or malformed product id.
    """
    if payment_status and payment_status not in PAYMENT_STATUSES:
        raise ValidationError("Invalid payment status")
    if investment_status and investment_status not in INVESTMENT_STATUSES:
        raise ValidationError("Invalid investment status")

    page, limit = _page_window(ctx, page, limit)

    match: dict[str, Any] = {}
    term = (query or "").strip()
    if term:
        pattern = {"$regex": re.escape(term), "$options": "i"}
        match["$or"] = [{"investorName": pattern}, {"email": pattern}, {"phone": pattern}]
    if product_id is not None:
        match["productId"] = parse_object_id(product_id, "productId")
    if payment_status:
        match["paymentStatus"] = payment_status
    if investment_status:
        match["investmentStatus"] = investment_status
    for field, value in (("address.city", city), ("address.state", state)):
        if value and value.strip():
            match[field] = {"$regex": re.escape(value.strip()), "$options": "i"}

    with store_guard("search_investors"):
        total = ctx.db[PLEDGES].count_documents(match)
        docs = list(
            ctx.db[PLEDGES]
            .find(match)
            .sort([("createdAt", -1), ("_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )

    return {
        "success": True,
        "investors": [_pledge_item(d) for d in docs],
        "pagination": pagination_meta(page, limit, total).to_dict(),
    }


def find_pledges_by_email(ctx: AppContext, email: str) -> list[dict[str, Any]]:
    """Return every pledge made under `email` (case-insensitive), newest first."""
    with store_guard("find_pledges_by_email"):
        docs = list(
            ctx.db[PLEDGES]
            .find({"email": (email or "").strip().lower()})
            .sort([("createdAt", -1), ("_id", -1)])
        )
    return [_pledge_item(d) for d in docs]
