from __future__ import annotations

import mongomock

from investment_core.slugs import backfill_slugs, generate_unique_slug, slugify_title


def test_slugify_title() -> None:
    assert slugify_title("Midnight Sessions: Vol. 2!") == "midnight-sessions-vol-2"
    assert slugify_title("  --Hello   World--  ") == "hello-world"
    assert slugify_title("!!!") == "product"
    assert len(slugify_title("a" * 250)) == 100


def test_unique_slug_appends_suffixes() -> None:
    products = mongomock.MongoClient().db.products
    assert generate_unique_slug(products, "Night Owls") == "night-owls"

    products.insert_one({"slug": "night-owls"})
    assert generate_unique_slug(products, "Night Owls") == "night-owls-1"

    products.insert_one({"slug": "night-owls-1"})
    assert generate_unique_slug(products, "Night  Owls!") == "night-owls-2"


def test_unique_slug_ignores_own_document() -> None:
    products = mongomock.MongoClient().db.products
    oid = products.insert_one({"slug": "night-owls"}).inserted_id
    assert generate_unique_slug(products, "Night Owls", exclude_id=oid) == "night-owls"


def test_backfill_is_idempotent() -> None:
    products = mongomock.MongoClient().db.products
    products.insert_many(
        [
            {"productTitle": "Reel One", "slug": "reel-one"},
            {"productTitle": "Reel One"},
            {"productTitle": "Short Film", "slug": ""},
        ]
    )

    assert backfill_slugs(products) == 2
    slugs = sorted(d["slug"] for d in products.find())
    assert slugs == ["reel-one", "reel-one-1", "short-film"]

    assert backfill_slugs(products) == 0
