import math

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    """
    ?page=1&limit=10 -> {"results": [...], "pagination": {...}}
    """
    page_size = 10
    page_query_param = "page"
    page_size_query_param = "limit"
    max_page_size = 50

    def get_paginated_response(self, data):
        total = self.page.paginator.count
        limit = self.page.paginator.per_page
        return Response({
            "results": data,
            "pagination": {
                "page": self.page.number,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if limit else 0,
            },
        })
