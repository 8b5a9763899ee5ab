from __future__ import annotations

import pytest
from pydantic import ValidationError

from investment_core.query import ListParams, build_product_filter, build_sort, pagination_meta


def test_pagination_first_page() -> None:
    meta = pagination_meta(1, 12, 25)
    assert meta.total_pages == 3
    assert meta.has_prev is False
    assert meta.has_next is True


def test_pagination_last_page() -> None:
    meta = pagination_meta(3, 12, 25)
    assert meta.has_prev is True
    assert meta.has_next is False


def test_pagination_past_the_end_is_valid() -> None:
    meta = pagination_meta(9, 12, 25)
    assert meta.has_next is False
    assert meta.total_pages == 3


def test_pagination_empty() -> None:
    meta = pagination_meta(1, 12, 0)
    assert meta.total_pages == 0
    assert meta.has_next is False
    assert meta.to_dict()["totalItems"] == 0


@pytest.mark.parametrize("raw", ["abc", 0, -4, None, ""])
def test_bad_limit_defaults(raw: object) -> None:
    assert ListParams.model_validate({"limit": raw}).limit == 12


@pytest.mark.parametrize("raw", ["abc", 0, None])
def test_bad_limit_uses_context_default(raw: object) -> None:
    params = ListParams.model_validate({"limit": raw}, context={"default_limit": 5})
    assert params.limit == 5


def test_limit_is_capped() -> None:
    assert ListParams.model_validate({"limit": 5000}).limit == 100
    assert ListParams.model_validate({"limit": 5000, "max_limit": 50}).limit == 50


def test_bad_page_becomes_one() -> None:
    assert ListParams.model_validate({"page": "-3"}).page == 1
    assert ListParams.model_validate({"page": "x"}).page == 1


def test_unknown_sort_field_rejected() -> None:
    with pytest.raises(ValidationError):
        ListParams.model_validate({"sortBy": "password"})


def test_unknown_category_rejected() -> None:
    with pytest.raises(ValidationError):
        ListParams.model_validate({"category": "Podcasts"})


def test_filter_defaults_to_active() -> None:
    assert build_product_filter(ListParams()) == {"isActive": True}


def test_filter_combines_predicates_with_text() -> None:
    params = ListParams.model_validate(
        {
            "category": "Music",
            "status": "funding",
            "featured": "false",
            "active": "true",
            "q": "  night owls ",
            "minBudget": "1000",
            "maxBudget": 50000,
        }
    )
    assert build_product_filter(params) == {
        "isActive": True,
        "category": "Music",
        "productStatus": "funding",
        "isFeatured": False,
        "totalBudget": {"$gte": 1000.0, "$lte": 50000.0},
        "$text": {"$search": "night owls"},
    }


def test_sort_spec() -> None:
    assert build_sort(ListParams.model_validate({"sortBy": "totalBudget", "sortOrder": "asc"})) == [
        ("totalBudget", 1),
        ("_id", 1),
    ]
    relevance = ListParams.model_validate({"sortBy": "relevance", "q": "jazz"})
    assert build_sort(relevance)[0] == ("score", {"$meta": "textScore"})
