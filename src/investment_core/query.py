"""Translate list/search request parameters into store queries.

`ListParams` normalizes raw request values (strings from a query string are
fine), `build_product_filter` and `build_sort` produce the Mongo filter and
sort spec, and `pagination_meta` computes the page block returned with every
list.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from investment_core.models import Category, Pagination, ProductStatus

SORTABLE_FIELDS = {
    "createdAt",
    "updatedAt",
    "totalBudget",
    "minimumInvestment",
    "fundingDeadline",
    "productTitle",
    "viewCount",
}
RELEVANCE = "relevance"

DEFAULT_LIMIT = 12
MAX_LIMIT = 100


def _coerce_bool(v: Any) -> Any:
    if isinstance(v, str):
        lowered = v.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
        if lowered == "":
            return None
    return v


class ListParams(BaseModel):
    """Filter, sort and paging parameters for list and search reads.

    Garbage paging values never fail a request: a page below 1 becomes 1 and
    a non-numeric or non-positive limit becomes the default; limits above
    `max_limit` are capped.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    category: Category | None = None
    status: ProductStatus | None = None
    featured: bool | None = None
    active: bool = True
    search: str | None = Field(None, alias="q")
    min_budget: float | None = Field(None, ge=0, alias="minBudget")
    max_budget: float | None = Field(None, ge=0, alias="maxBudget")
    sort_by: str = Field("createdAt", alias="sortBy")
    sort_order: str = Field("desc", alias="sortOrder")
    max_limit: int = Field(MAX_LIMIT, exclude=True)
    page: int = 1
    limit: int = DEFAULT_LIMIT

    @field_validator("category", "status", "search", "min_budget", "max_budget", mode="before")
    @classmethod
    def _blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("search")
    @classmethod
    def _trim_search(cls, v: str | None) -> str | None:
        return v.strip() if v else None

    @field_validator("featured", mode="before")
    @classmethod
    def _featured_bool(cls, v: Any) -> Any:
        return _coerce_bool(v)

    @field_validator("active", mode="before")
    @classmethod
    def _active_bool(cls, v: Any) -> Any:
        v = _coerce_bool(v)
        return True if v is None else v

    @field_validator("sort_by")
    @classmethod
    def _sortable(cls, v: str) -> str:
        if v != RELEVANCE and v not in SORTABLE_FIELDS:
            raise ValueError(f"cannot sort by {v!r}")
        return v

    @field_validator("sort_order", mode="before")
    @classmethod
    def _order(cls, v: Any) -> str:
        v = str(v or "desc").strip().lower()
        if v not in {"asc", "desc"}:
            raise ValueError("sort order must be 'asc' or 'desc'")
        return v

    @field_validator("page", mode="before")
    @classmethod
    def _page(cls, v: Any) -> int:
        try:
            return max(1, int(v))
        except (TypeError, ValueError):
            return 1

    @field_validator("max_limit", mode="before")
    @classmethod
    def _max_limit(cls, v: Any) -> int:
        try:
            return max(1, int(v))
        except (TypeError, ValueError):
            return MAX_LIMIT

    @field_validator("limit", mode="before")
    @classmethod
    def _limit(cls, v: Any, info: ValidationInfo) -> int:
        # callers pass their configured default as validation context
        default = (info.context or {}).get("default_limit", DEFAULT_LIMIT)
        try:
            n = int(v)
        except (TypeError, ValueError):
            return default
        return n if n > 0 else default

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, v: int, info: ValidationInfo) -> int:
        return min(v, info.data.get("max_limit", MAX_LIMIT))

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def cache_params(self) -> dict[str, Any]:
        """Every parameter that affects the result, for the cache key."""
        return self.model_dump(exclude={"max_limit"})


def build_product_filter(params: ListParams) -> dict[str, Any]:
    """Return the Mongo filter for a list/search request.

    Exact-match and range predicates are ANDed with the `$text` predicate
    when a search term is present.
    """
    match: dict[str, Any] = {"isActive": params.active}
    if params.category:
        match["category"] = params.category
    if params.status:
        match["productStatus"] = params.status
    if params.featured is not None:
        match["isFeatured"] = params.featured

    budget: dict[str, float] = {}
    if params.min_budget is not None:
        budget["$gte"] = params.min_budget
    if params.max_budget is not None:
        budget["$lte"] = params.max_budget
    if budget:
        match["totalBudget"] = budget

    if params.search:
        match["$text"] = {"$search": params.search}
    return match


def build_sort(params: ListParams) -> list[tuple[str, Any]]:
    """Return the sort spec; `_id` is appended so paging is stable."""
    if params.sort_by == RELEVANCE:
        if params.search:
            return [("score", {"$meta": "textScore"}), ("_id", 1)]
        return [("createdAt", -1), ("_id", 1)]
    direction = -1 if params.sort_order == "desc" else 1
    return [(params.sort_by, direction), ("_id", 1)]


def pagination_meta(page: int, limit: int, total_items: int) -> Pagination:
    """Return the pagination block for a page of results.

    A page past the end is valid: it carries no items and reports
    `has_next=False`.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")
    return Pagination(
        current_page=page,
        total_pages=math.ceil(total_items / limit),
        total_items=total_items,
        has_next=page * limit < total_items,
        has_prev=page > 1,
        limit=limit,
    )
