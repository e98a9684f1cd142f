"""Page-number pagination wrapped in the API's success envelope."""

from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class FixItNowPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "limit"
    max_page_size = 100

    def get_pagination_block(self) -> dict[str, int]:
        paginator = self.page.paginator
        return {
            "page": self.page.number,
            "limit": paginator.per_page,
            "total": paginator.count,
            "pages": paginator.num_pages if paginator.count else 0,
        }

    def get_paginated_response(self, data, key: str = "results"):
        return Response(
            {
                "success": True,
                "data": {key: data, "pagination": self.get_pagination_block()},
            }
        )
