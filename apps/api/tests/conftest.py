"""
Global test fixtures for pytest.

Provides reusable fixtures for API testing:
- Authenticated API clients by role
- Model instances (Doctor, Patient, Appointment)
"""
from datetime import time, timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from apps.authz.models import RoleChoices, Staff, User
from apps.clinical.models import Appointment, MedicalRecord, Patient, Prescription
from apps.core.gateway import get_gateway
from apps.core.observability.correlation import clear_request_context


@pytest.fixture(autouse=True)
def _clean_request_context():
    yield
    clear_request_context()


def _make_user(role, email, **extra):
    return User.objects.create_user(
        email=email,
        password='testpass123',
        role=role,
        first_name=extra.pop('first_name', role.title()),
        last_name=extra.pop('last_name', 'Tester'),
        is_active=True,
        **extra
    )


def _client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_user(db):
    return _make_user(RoleChoices.ADMIN, 'admin@test.com', is_staff=True)


@pytest.fixture
def admin_client(admin_user):
    """Admin has full access, including user administration."""
    return _client_for(admin_user)


@pytest.fixture
def doctor_client(doctor):
    return _client_for(doctor.user)


@pytest.fixture
def nurse_client(db):
    return _client_for(_make_user(RoleChoices.NURSE, 'nurse@test.com'))


@pytest.fixture
def receptionist_client(db):
    """Receptionist books appointments but does not see medical fields."""
    return _client_for(_make_user(RoleChoices.RECEPTIONIST, 'reception@test.com'))


@pytest.fixture
def pharmacist_client(db):
    """Pharmacist reads patients only."""
    return _client_for(_make_user(RoleChoices.PHARMACIST, 'pharmacist@test.com'))


@pytest.fixture
def patient_client(patient):
    """Patient-role user: no access to staff endpoints."""
    return _client_for(patient.user)


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def gateway(db):
    return get_gateway()


@pytest.fixture
def doctor_factory(db):
    """
    Factory fixture for doctors (Staff rows with a doctor user).

    Usage:
        doctor = doctor_factory(specialization='Neurology')
    """
    counter = {'n': 0}

    def _create_doctor(**kwargs):
        counter['n'] += 1
        n = counter['n']
        user = _make_user(
            RoleChoices.DOCTOR,
            kwargs.pop('email', f'doctor{n}@test.com'),
            first_name=kwargs.pop('first_name', 'Gregory'),
            last_name=kwargs.pop('last_name', f'House{n}'),
        )
        defaults = {
            'employee_id': f'EMP{n:03d}',
            'specialization': 'General Medicine',
            'department': 'Outpatients',
            'license_number': f'LIC-{n:04d}',
            'is_active': True,
        }
        defaults.update(kwargs)
        return Staff.objects.create(user=user, **defaults)

    return _create_doctor


@pytest.fixture
def doctor(doctor_factory):
    return doctor_factory(first_name='John', last_name='Smith', specialization='Cardiology')


@pytest.fixture
def patient_factory(db):
    """
    Factory fixture for patients created directly (bypassing registration).

    Usage:
        patient = patient_factory(first_name='Jane', gender='female')
    """
    counter = {'n': 0}

    def _create_patient(**kwargs):
        counter['n'] += 1
        n = counter['n']
        user = _make_user(
            RoleChoices.PATIENT,
            kwargs.pop('email', f'patient{n}@test.com'),
            first_name=kwargs.pop('first_name', 'Test'),
            last_name=kwargs.pop('last_name', f'Patient{n}'),
            phone=kwargs.pop('phone', f'+1555000{n:04d}'),
        )
        defaults = {
            'patient_number': f'TST{n:06d}',
            'gender': 'female',
            'blood_type': 'O+',
            'allergies': 'Penicillin',
            'medical_history': 'Asthma',
        }
        defaults.update(kwargs)
        return Patient.objects.create(user=user, **defaults)

    return _create_patient


@pytest.fixture
def patient(patient_factory):
    return patient_factory(first_name='Jane', last_name='Doe', email='jane@x.com')


@pytest.fixture
def tomorrow():
    return timezone.localdate() + timedelta(days=1)


@pytest.fixture
def appointment_factory(db, patient, doctor, tomorrow):
    """
    Factory fixture for appointments written straight to the table.

    Usage:
        appt = appointment_factory(appointment_time=time(10, 0), status='confirmed')
    """
    def _create_appointment(**kwargs):
        defaults = {
            'patient': patient,
            'doctor': doctor,
            'appointment_date': tomorrow,
            'appointment_time': time(10, 0),
            'duration_minutes': 30,
            'status': 'scheduled',
            'reason': 'Routine check-up',
        }
        defaults.update(kwargs)
        return Appointment.objects.create(**defaults)

    return _create_appointment


@pytest.fixture
def appointment(appointment_factory):
    """Doctor's 10:00-10:30 slot tomorrow, status scheduled."""
    return appointment_factory()


@pytest.fixture
def medical_record(patient, doctor):
    return MedicalRecord.objects.create(
        patient=patient,
        doctor=doctor,
        record_type='diagnosis',
        diagnosis='Hypertension',
        treatment='Lifestyle changes and medication',
    )


@pytest.fixture
def prescription(patient, doctor, medical_record):
    """Pending 90-day Lisinopril course starting today."""
    return Prescription.objects.create(
        patient=patient,
        doctor=doctor,
        medical_record=medical_record,
        medication='Lisinopril 10mg',
        dosage='10mg once daily',
        instructions='Take with food',
        start_date=timezone.localdate(),
        end_date=timezone.localdate() + timedelta(days=90),
        quantity=90,
    )
