"""Product operations: create, read, list, search, bulk update, delete.

Writes follow one order: validate -> check duplicates -> upload media ->
persist (inside a transaction when enabled) -> flush the result cache.
Reads go through the result cache; funding figures come from the aggregator,
never from the stored counters.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from investment_core.cache import cached, make_cache_key
from investment_core.catalog.media import MediaUploader, upload_media
from investment_core.context import AppContext
from investment_core.db import PLEDGES, PRODUCTS, parse_object_id, store_guard, to_public, transaction
from investment_core.errors import DuplicateError, NotFoundError, UploadError, ValidationError
from investment_core.funding.metrics import (
    funding_percentage,
    funding_status_text,
    remaining_amount,
    time_remaining,
)
from investment_core.models import BulkUpdateFields, ListStats, ProductCreate
from investment_core.query import (
    RELEVANCE,
    ListParams,
    build_product_filter,
    build_sort,
    pagination_meta,
)
from investment_core.slugs import generate_unique_slug

log = logging.getLogger(__name__)

SLUG_ATTEMPTS = 3
MIN_SEARCH_LENGTH = 2
BULK_FIELDS = ("isFeatured", "isActive", "productStatus", "category")

# stored counters are excluded: read paths report live figures only
LIST_PROJECTION = {
    "productTitle": 1, "artistName": 1, "category": 1, "genre": 1,
    "totalBudget": 1, "minimumInvestment": 1, "fundingDeadline": 1,
    "productStatus": 1, "fundingStatus": 1, "isFeatured": 1, "isActive": 1,
    "slug": 1, "createdAt": 1, "updatedAt": 1, "youtubeLink": 1, "tags": 1,
    "coverImage": 1, "galleryImages": 1, "description": 1, "targetAudience": 1,
}
DETAIL_EXCLUDE = {"currentFunding": 0, "pledgedTotal": 0, "totalInvestors": 0}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_product(payload: Mapping[str, Any]) -> ProductCreate:
    try:
        return ProductCreate.model_validate(dict(payload))
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


def _funding_fields(doc: Mapping[str, Any], stats: ListStats) -> dict[str, Any]:
    budget = doc.get("totalBudget")
    return {
        "totalInvestors": stats.total_investors,
        "actualFunding": stats.actual_funding,
        "fundingPercentage": stats.funding_percentage,
        "remainingAmount": remaining_amount(stats.actual_funding, budget),
        "fundingStatusText": funding_status_text(stats.funding_percentage),
        "timeRemaining": time_remaining(doc.get("fundingDeadline")),
    }


# =========================================================
# CREATE
# =========================================================

def create_product(
    ctx: AppContext,
    payload: Mapping[str, Any],
    files: Mapping[str, Any] | None = None,
    uploader: MediaUploader | None = None,
) -> dict[str, Any]:
    """Validate, upload media for and persist a new product.

    Args:
        ctx: Application context.
        payload: Product fields (camelCase or snake_case).
        files: Optional media files keyed by field name (see `media.py`).
        uploader: Media host client; required when `files` is non-empty.

    Returns:
        The stored product with `id` and `slug`.

    Raises:
        ValidationError: invalid fields (nothing uploaded or stored).
        DuplicateError: an active product has the same title, or a slug
            conflict persisted across retries.
        UploadError: a media upload failed (nothing stored).
        StoreUnavailable: the store could not be reached.
    """
    product = _validate_product(payload)
    products = ctx.db[PRODUCTS]

    with store_guard("create_product"):
        existing = products.find_one(
            {"productTitle": product.product_title, "isActive": True}, {"_id": 1}
        )
    if existing is not None:
        raise DuplicateError("A product with this title already exists")

    if files:
        if uploader is None:
            raise UploadError("Media files were provided but no uploader is configured")
        urls = upload_media(uploader, files)
        product = _validate_product({**product.model_dump(by_alias=True), **urls})

    now = _now()
    doc: dict[str, Any] = {
        **product.model_dump(by_alias=True),
        "currentFunding": 0.0,
        "pledgedTotal": 0.0,
        "totalInvestors": 0,
        "viewCount": 0,
        "shareCount": 0,
        "createdAt": now,
        "updatedAt": now,
    }

    for attempt in range(1, SLUG_ATTEMPTS + 1):
        try:
            with store_guard("create_product"):
                with transaction(ctx.client, ctx.settings.use_transactions) as session:
                    doc["slug"] = generate_unique_slug(products, product.product_title, session=session)
                    products.insert_one(doc, session=session)
            break
        except DuplicateError as e:
            slug_race = isinstance(e.__cause__, DuplicateKeyError) and "slug" in str(e.__cause__)
            if not slug_race or attempt == SLUG_ATTEMPTS:
                raise
            doc.pop("_id", None)
            log.info("Slug %s taken concurrently, retrying (%d/%d)", doc["slug"], attempt, SLUG_ATTEMPTS)

    ctx.cache.invalidate_all()
    log.info("Created product %s (%s)", doc["_id"], doc["slug"])
    return to_public(doc)


# =========================================================
# READ
# =========================================================

def get_product(ctx: AppContext, product_id: Any) -> dict[str, Any]:
    """Return one active product with live funding statistics.

    Cached for `product_cache_ttl` seconds. The product's view counter is
    bumped whenever the detail is recomputed.

    Raises:
        ValidationError: malformed id.
        NotFoundError: no such product, or it is inactive.
    """
    oid = parse_object_id(product_id, "id")
    products = ctx.db[PRODUCTS]

    def compute() -> dict[str, Any]:
        with store_guard("get_product"):
            doc = products.find_one({"_id": oid, "isActive": True}, DETAIL_EXCLUDE)
        if doc is None:
            raise NotFoundError("Investment product not found")

        stats = ctx.aggregator.compute_product_stats(oid)
        list_stats = ListStats(
            total_investors=stats.total_investors,
            actual_funding=stats.total_amount,
            funding_percentage=funding_percentage(stats.total_amount, doc.get("totalBudget")),
        )

        with store_guard("get_product"):
            products.update_one({"_id": oid}, {"$inc": {"viewCount": 1}})

        item = {**to_public(doc), **_funding_fields(doc, list_stats)}
        item["stats"] = stats.to_dict()
        item["recentInvestments"] = item["stats"].pop("recentPledges")
        return {"product": item}

    key = make_cache_key("product", id=str(oid))
    value, hit = cached(ctx.cache, key, ctx.settings.product_cache_ttl, compute)
    return {"success": True, **value, "cached": hit}


def _parse_params(ctx: AppContext, raw: Mapping[str, Any] | ListParams) -> ListParams:
    if isinstance(raw, ListParams):
        return raw
    data = dict(raw)
    data.setdefault("limit", None)
    data["max_limit"] = ctx.settings.max_page_limit
    try:
        return ListParams.model_validate(
            data, context={"default_limit": ctx.settings.default_page_limit}
        )
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "Invalid query parameters") from e


def _list_item(doc: Mapping[str, Any], stats: ListStats) -> dict[str, Any]:
    item = to_public(doc)
    item["description"] = (item.get("description") or "")[:200]
    item["galleryImages"] = list(item.get("galleryImages") or [])[:3]
    item["targetAudience"] = list(item.get("targetAudience") or [])[:5]
    item.update(_funding_fields(doc, stats))
    return item


def _query_page(ctx: AppContext, params: ListParams) -> dict[str, Any]:
    products = ctx.db[PRODUCTS]
    match = build_product_filter(params)
    projection = dict(LIST_PROJECTION)
    if params.search and params.sort_by == RELEVANCE:
        projection["score"] = {"$meta": "textScore"}

    with store_guard("query_products"):
        total = products.count_documents(match)
        docs = list(
            products.find(match, projection)
            .sort(build_sort(params))
            .skip(params.skip)
            .limit(params.limit)
        )

    stats = ctx.aggregator.compute_list_stats(
        [d["_id"] for d in docs],
        budgets={d["_id"]: d.get("totalBudget", 0) for d in docs},
    )
    return {
        "products": [_list_item(d, stats[d["_id"]]) for d in docs],
        "pagination": pagination_meta(params.page, params.limit, total).to_dict(),
    }


def list_products(ctx: AppContext, raw_params: Mapping[str, Any] | ListParams) -> dict[str, Any]:
    """Return one page of products matching the filters, with funding figures.

    Args:
        ctx: Application context.
        raw_params: Request parameters (see `ListParams`); `active`
            defaults to true.

    Returns:
        `{success, products, pagination, cached}`.
    """
    params = _parse_params(ctx, raw_params)
    key = make_cache_key("products", params.cache_params())
    value, hit = cached(ctx.cache, key, ctx.settings.list_cache_ttl, lambda: _query_page(ctx, params))
    return {"success": True, **value, "cached": hit}


def search_products(ctx: AppContext, raw_params: Mapping[str, Any] | ListParams) -> dict[str, Any]:
    """Full-text search over title, artist, tags and description.

    Sorted by relevance unless another sort field is requested.

    Raises:
        ValidationError: the search term is shorter than 2 characters.
    """
    data = raw_params if isinstance(raw_params, ListParams) else {"sortBy": RELEVANCE, **raw_params}
    params = _parse_params(ctx, data)
    if not params.search or len(params.search) < MIN_SEARCH_LENGTH:
        raise ValidationError(
            "Search query must be at least 2 characters long",
            ["q: must be at least 2 characters"],
        )

    key = make_cache_key("search", params.cache_params())
    value, hit = cached(ctx.cache, key, ctx.settings.search_cache_ttl, lambda: _query_page(ctx, params))
    return {"success": True, **value, "searchQuery": params.search, "cached": hit}


# =========================================================
# UPDATE / DELETE
# =========================================================

def bulk_update_products(
    ctx: AppContext,
    product_ids: Sequence[Any],
    updates: Mapping[str, Any],
) -> dict[str, Any]:
    """Apply the same status/category/flag change to many products.

    Only `isFeatured`, `isActive`, `productStatus` and `category` may be
    changed. The result reports how many of the requested products were
    actually modified.

    Raises:
        ValidationError: empty ids, malformed ids, disallowed fields or
            invalid values.
    """
    if not isinstance(product_ids, (list, tuple)) or not product_ids:
        raise ValidationError("Product IDs array is required")
    if not isinstance(updates, Mapping) or not updates:
        raise ValidationError("Updates object is required")

    allowed = set(BULK_FIELDS) | set(BulkUpdateFields.model_fields)
    disallowed = sorted(k for k in updates if k not in allowed)
    if disallowed:
        raise ValidationError(
            f"Only these fields can be bulk updated: {', '.join(BULK_FIELDS)}",
            [f"{k}: cannot be bulk updated" for k in disallowed],
        )

    try:
        fields = BulkUpdateFields.model_validate(dict(updates))
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e

    ids = list(dict.fromkeys(parse_object_id(pid, "productIds") for pid in product_ids))
    changes = {**fields.model_dump(by_alias=True, exclude_none=True), "updatedAt": _now()}

    with store_guard("bulk_update_products"):
        res = ctx.db[PRODUCTS].update_many({"_id": {"$in": ids}}, {"$set": changes})

    ctx.cache.invalidate_all()
    log.info(
        "Bulk update %s: %d requested, %d matched, %d modified",
        sorted(changes), len(ids), res.matched_count, res.modified_count,
    )
    return {
        "success": True,
        "message": f"{res.modified_count} of {len(ids)} products updated",
        "requested": len(ids),
        "matched": res.matched_count,
        "modified": res.modified_count,
    }


def delete_product(ctx: AppContext, product_id: Any, hard: bool = False) -> dict[str, Any]:
    """Deactivate a product, or remove it together with its pledges.

    A hard delete removes the product first and then, as a separate step of
    the same transaction, every pledge referencing it.

    Raises:
        NotFoundError: no such product.
    """
    oid = parse_object_id(product_id, "id")
    products = ctx.db[PRODUCTS]

    if not hard:
        with store_guard("delete_product"):
            res = products.update_one({"_id": oid}, {"$set": {"isActive": False, "updatedAt": _now()}})
        if res.matched_count == 0:
            raise NotFoundError("Investment product not found")
        ctx.cache.invalidate_all()
        log.info("Deactivated product %s", oid)
        return {"success": True, "message": "Investment product deactivated", "deletedPledges": 0}

    with store_guard("delete_product"):
        with transaction(ctx.client, ctx.settings.use_transactions) as session:
            res = products.delete_one({"_id": oid}, session=session)
            if res.deleted_count == 0:
                raise NotFoundError("Investment product not found")
            removed = ctx.db[PLEDGES].delete_many({"productId": oid}, session=session).deleted_count

    ctx.cache.invalidate_all()
    log.info("Deleted product %s and %d pledges", oid, removed)
    return {"success": True, "message": "Investment product deleted", "deletedPledges": removed}


def increment_share(ctx: AppContext, product_id: Any) -> dict[str, Any]:
    """Count one share of an active product.

    `shareCount` is an engagement counter like `viewCount`; it does not
    flush cached reads.

    Raises:
        NotFoundError: no such active product.
    """
    oid = parse_object_id(product_id, "id")
    with store_guard("increment_share"):
        doc = ctx.db[PRODUCTS].find_one_and_update(
            {"_id": oid, "isActive": True},
            {"$inc": {"shareCount": 1}},
            projection={"shareCount": 1},
            return_document=ReturnDocument.AFTER,
        )
    if doc is None:
        raise NotFoundError("Investment product not found")
    return {"success": True, "shareCount": doc["shareCount"]}


# =========================================================
# ANALYTICS
# =========================================================

def get_funding_analytics(ctx: AppContext) -> dict[str, Any]:
    """Return global funding analytics, cached for `analytics_cache_ttl` seconds."""
    key = make_cache_key("analytics", scope="funding")
    value, hit = cached(
        ctx.cache,
        key,
        ctx.settings.analytics_cache_ttl,
        ctx.aggregator.compute_global_analytics,
    )
    return {"success": True, "analytics": value, "cached": hit}
