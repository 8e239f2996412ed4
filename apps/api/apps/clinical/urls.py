"""
Clinical URLs - Patients, Appointments, Medical records, Prescriptions
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    AppointmentViewSet,
    MedicalRecordViewSet,
    PatientViewSet,
    PrescriptionViewSet,
)

router = DefaultRouter(trailing_slash='/?')
router.register(r'patients', PatientViewSet, basename='patient')
router.register(r'appointments', AppointmentViewSet, basename='appointment')
router.register(r'medical-records', MedicalRecordViewSet, basename='medical-record')
router.register(r'prescriptions', PrescriptionViewSet, basename='prescription')

urlpatterns = [
    path('', include(router.urls)),
]
