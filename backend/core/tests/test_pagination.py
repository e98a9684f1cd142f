import pytest
from rest_framework.exceptions import NotFound
from rest_framework.request import Request
from rest_framework.test import APIRequestFactory

from core.pagination import FixItNowPagination

factory = APIRequestFactory()


def _paginate(items, **params):
    paginator = FixItNowPagination()
    page = paginator.paginate_queryset(items, Request(factory.get("/", params)))
    return paginator, page


def test_default_page_size():
    paginator, page = _paginate(list(range(45)))

    assert page == list(range(20))
    assert paginator.get_pagination_block() == {
        "page": 1,
        "limit": 20,
        "total": 45,
        "pages": 3,
    }


def test_limit_and_page_params():
    paginator, page = _paginate(list(range(45)), page=3, limit=10)

    assert page == list(range(20, 30))
    assert paginator.get_pagination_block()["pages"] == 5


def test_limit_is_capped():
    paginator, page = _paginate(list(range(250)), limit=500)

    assert len(page) == FixItNowPagination.max_page_size
    assert paginator.get_pagination_block()["limit"] == 100


def test_empty_result_has_no_pages():
    paginator, page = _paginate([])

    assert page == []
    assert paginator.get_pagination_block() == {"page": 1, "limit": 20, "total": 0, "pages": 0}


def test_out_of_range_page_is_not_found():
    with pytest.raises(NotFound):
        _paginate(list(range(5)), page=4)


def test_paginated_response_envelope():
    paginator, page = _paginate(list(range(3)), limit=2)

    resp = paginator.get_paginated_response(page, key="items")

    assert resp.data == {
        "success": True,
        "data": {
            "items": [0, 1],
            "pagination": {"page": 1, "limit": 2, "total": 3, "pages": 2},
        },
    }
