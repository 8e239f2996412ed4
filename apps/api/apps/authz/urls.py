"""
Authz URLs - User administration and doctor directory
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import DoctorViewSet, UserViewSet

router = DefaultRouter(trailing_slash='/?')
router.register(r'users', UserViewSet, basename='user')
router.register(r'doctors', DoctorViewSet, basename='doctor')

urlpatterns = [
    path('', include(router.urls)),
]
