"""
Page/limit pagination with the ``{page, limit, total, pages}`` meta block.
"""
import math

from django.conf import settings
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from apps.core.exceptions import ValidationFailed


class HMISPagination(PageNumberPagination):
    """
    ``?page=<1-based>&limit=<n>`` with ``1 <= limit <= HMIS_MAX_PAGE_SIZE``.

    Pages past the end return an empty list rather than a 404.
    """
    page_query_param = 'page'
    page_size_query_param = 'limit'

    def __init__(self):
        self.page_size = getattr(settings, 'HMIS_DEFAULT_PAGE_SIZE', 10)
        self.max_page_size = getattr(settings, 'HMIS_MAX_PAGE_SIZE', 100)

    def _positive_int(self, request, name, default, maximum=None):
        raw = request.query_params.get(name)
        if raw in (None, ''):
            return default
        try:
            value = int(raw)
        except (TypeError, ValueError):
            value = 0
        if value < 1 or (maximum is not None and value > maximum):
            message = (
                f'{name} must be between 1 and {maximum}' if maximum is not None
                else f'{name} must be a positive integer'
            )
            raise ValidationFailed(errors=[{'field': name, 'message': message}])
        return value

    def paginate_queryset(self, queryset, request, view=None):
        self.request = request
        self.page_number = self._positive_int(request, self.page_query_param, 1)
        self.limit = self._positive_int(
            request, self.page_size_query_param, self.page_size, self.max_page_size
        )
        self.total = queryset.count()
        offset = (self.page_number - 1) * self.limit
        return list(queryset[offset:offset + self.limit])

    def get_pagination_meta(self):
        return {
            'page': self.page_number,
            'limit': self.limit,
            'total': self.total,
            'pages': math.ceil(self.total / self.limit) if self.total else 0,
        }

    def get_paginated_response(self, data):
        return Response({
            'success': True,
            'data': data,
            'pagination': self.get_pagination_meta(),
        })

    def get_paginated_response_schema(self, schema):
        return {
            'type': 'object',
            'properties': {
                'success': {'type': 'boolean'},
                'data': schema,
                'pagination': {
                    'type': 'object',
                    'properties': {
                        'page': {'type': 'integer'},
                        'limit': {'type': 'integer'},
                        'total': {'type': 'integer'},
                        'pages': {'type': 'integer'},
                    },
                },
            },
        }
