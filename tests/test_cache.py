from __future__ import annotations

from typing import Any

import pytest

from investment_core.cache import MISS, ResultCache, cached, make_cache_key
from investment_core.query import ListParams


def test_get_set_and_lazy_expiry(clock: Any) -> None:
    cache = ResultCache(clock=clock)
    cache.set("k", {"v": 1}, 120)
    assert cache.get("k") == {"v": 1}

    clock.advance(119)
    assert cache.get("k") == {"v": 1}

    clock.advance(1)
    assert cache.get("k") is MISS
    assert len(cache) == 0


def test_invalidate_all(clock: Any) -> None:
    cache = ResultCache(clock=clock)
    cache.set("a", 1, 60)
    cache.set("b", 2, 60)
    cache.invalidate_all()
    assert cache.get("a") is MISS
    assert cache.get("b") is MISS
    cache.invalidate_all()  # idempotent


def test_set_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValueError):
        ResultCache().set("k", 1, 0)


def test_cache_key_ignores_construction_order() -> None:
    a = make_cache_key("products", {"category": "Music", "page": 2, "limit": 12})
    b = make_cache_key("products", {"limit": 12, "page": 2, "category": "Music"})
    assert a == b


def test_cache_key_differs_on_any_value() -> None:
    base = {"category": "Music", "page": 1, "limit": 12}
    assert make_cache_key("products", base) != make_cache_key("products", {**base, "page": 2})
    assert make_cache_key("products", base) != make_cache_key("search", base)
    assert make_cache_key("products", {"page": 1}) != make_cache_key("products", {"page": "1"})


def test_cache_key_drops_none_values() -> None:
    assert make_cache_key("products", {"category": None, "page": 1}) == make_cache_key(
        "products", {"page": 1}
    )


def test_list_params_keys_are_stable() -> None:
    p1 = ListParams.model_validate({"category": "Film", "page": "2", "featured": "true"})
    p2 = ListParams.model_validate({"featured": True, "page": 2, "category": "Film"})
    assert make_cache_key("products", p1.cache_params()) == make_cache_key(
        "products", p2.cache_params()
    )
    p3 = ListParams.model_validate({"featured": False, "page": 2, "category": "Film"})
    assert make_cache_key("products", p1.cache_params()) != make_cache_key(
        "products", p3.cache_params()
    )


def test_cached_computes_once_then_hits(clock: Any) -> None:
    cache = ResultCache(clock=clock)
    calls = []

    def compute() -> dict[str, int]:
        calls.append(1)
        return {"n": len(calls)}

    assert cached(cache, "k", 60, compute) == ({"n": 1}, False)
    assert cached(cache, "k", 60, compute) == ({"n": 1}, True)
    clock.advance(60)
    assert cached(cache, "k", 60, compute) == ({"n": 2}, False)


def test_cached_does_not_store_failures(clock: Any) -> None:
    cache = ResultCache(clock=clock)

    def boom() -> None:
        raise RuntimeError("aggregation failed")

    with pytest.raises(RuntimeError):
        cached(cache, "k", 60, boom)
    assert cache.get("k") is MISS


class BrokenCache(ResultCache):
    def get(self, key: str) -> Any:
        raise ConnectionError("cache down")

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        raise ConnectionError("cache down")


def test_cache_failure_falls_through_to_compute() -> None:
    value, hit = cached(BrokenCache(), "k", 60, lambda: [1, 2, 3])
    assert value == [1, 2, 3]
    assert hit is False


def test_values_are_isolated_from_callers(clock: Any) -> None:
    cache = ResultCache(clock=clock)
    stored = {"products": [{"productTitle": "A"}]}
    cache.set("k", stored, 60)
    stored["products"][0]["productTitle"] = "changed before read"

    first = cache.get("k")
    first["products"][0]["productTitle"] = "changed after read"
    first["products"].append({"productTitle": "B"})

    assert cache.get("k") == {"products": [{"productTitle": "A"}]}
