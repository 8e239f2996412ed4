"""
URL configuration for the HMIS API.
"""
from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)
from apps.core.observability.health import HealthzView, ReadyzView
from apps.core.views import metrics_view

urlpatterns = [
    # Health checks and metrics (no auth required)
    path('healthz', HealthzView.as_view(), name='healthz'),
    path('readyz', ReadyzView.as_view(), name='readyz'),
    path('metrics', metrics_view, name='metrics'),

    # Admin
    path('admin/', admin.site.urls),

    # Private API (authentication required)
    path('api/auth/', include('apps.core.urls')),
    path('api/', include('apps.authz.urls')),  # users, doctors
    path('api/', include('apps.clinical.urls')),  # patients, appointments

    # API Schema
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/schema/swagger-ui/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/schema/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]
