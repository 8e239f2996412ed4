"""
Core views - shared viewset behaviour, current user profile, Prometheus metrics.
"""
from django.http import Http404, HttpResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from apps.core.exceptions import NotFoundError
from apps.core.gateway import get_gateway
from apps.core.observability.correlation import bind_user
from apps.core.pagination import HMISPagination
from apps.core.responses import success_response


class HMISViewSetMixin:
    """
    Common behaviour for API viewsets.

    - binds the JWT-authenticated user to the logging context
    - page/limit pagination with the ``pagination`` meta block
    - ``{success, data}`` envelope for retrieve
    - missing objects raise ``NotFoundError`` ("<resource_name> not found")
    """
    pagination_class = HMISPagination
    resource_name = 'Resource'

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        bind_user(request.user)

    def get_gateway(self):
        if not hasattr(self, '_gateway'):
            self._gateway = get_gateway()
        return self._gateway

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['gateway'] = self.get_gateway()
        return context

    def get_object(self):
        try:
            return super().get_object()
        except Http404:
            raise NotFoundError(self.resource_name)

    def retrieve(self, request, *args, **kwargs):
        serializer = self.get_serializer(self.get_object())
        return success_response(serializer.data)

    def paginated_list(self, queryset, serializer_class=None):
        serializer_class = serializer_class or self.get_serializer_class()
        page = self.paginate_queryset(queryset)
        serializer = serializer_class(page, many=True, context=self.get_serializer_context())
        return self.get_paginated_response(serializer.data)


class CurrentUserView(APIView):
    """
    Current authenticated user profile.

    GET /api/auth/me/ - Returns profile of the authenticated user.

    The frontend calls this after JWT login and uses ``role`` to decide
    which screens to show. The backend remains the authorization authority.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        from apps.authz.serializers import UserSerializer

        bind_user(request.user)
        return success_response(UserSerializer(request.user).data)


def metrics_view(request):
    """Prometheus exposition for the default registry."""
    return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
