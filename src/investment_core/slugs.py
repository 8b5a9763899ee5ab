"""URL slugs for products.

A slug is derived once, when a product is created, and is not regenerated
when the title changes later.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pymongo.client_session import ClientSession
from pymongo.collection import Collection

log = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 100
FALLBACK_SLUG = "product"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify_title(title: str) -> str:
    """Return the base slug for a title.

    Lowercases, collapses every run of characters outside `[a-z0-9]` into a
    single hyphen, strips leading/trailing hyphens, then truncates to 100
    characters. A title with no usable characters yields "product".
    """
    slug = _NON_ALNUM.sub("-", title.lower()).strip("-")[:MAX_SLUG_LENGTH]
    return slug or FALLBACK_SLUG


def generate_unique_slug(
    products: Collection[dict[str, Any]],
    title: str,
    exclude_id: Any = None,
    session: ClientSession | None = None,
) -> str:
    """Return a slug for `title` that no other product uses.

    On collision the suffixes `-1`, `-2`, ... are tried in order until a free
    one is found.

    Args:
        products: Products collection.
        title: Product title.
        exclude_id: `_id` of the product being slugged, so a product never
            collides with itself (legacy backfill).
        session: Optional session when called inside a transaction.
    """
    base = slugify_title(title)
    candidate = base
    suffix = 0

    while True:
        query: dict[str, Any] = {"slug": candidate}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if products.find_one(query, {"_id": 1}, session=session) is None:
            return candidate
        suffix += 1
        candidate = f"{base}-{suffix}"


def backfill_slugs(products: Collection[dict[str, Any]]) -> int:
    """Assign slugs to products stored without one.

    Products that already have a slug are left untouched, so re-running is a
    no-op.

    Returns:
        Number of products updated.
    """
    missing = {"$or": [{"slug": {"$exists": False}}, {"slug": None}, {"slug": ""}]}
    updated = 0

    for doc in products.find(missing, {"_id": 1, "productTitle": 1}).sort("_id", 1):
        slug = generate_unique_slug(products, doc.get("productTitle") or "", exclude_id=doc["_id"])
        res = products.update_one({"_id": doc["_id"], **missing}, {"$set": {"slug": slug}})
        updated += res.modified_count
        log.info("Backfilled slug %s for product %s", slug, doc["_id"])

    log.info("Slug backfill complete: %d products updated", updated)
    return updated
