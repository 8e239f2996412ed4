"""
Integration tests for Appointment API endpoints.

Tests booking, conflicts, rescheduling, status transitions, soft
cancellation, filtering and the response envelope.
"""
from datetime import time, timedelta

import pytest
from django.utils import timezone
from rest_framework import status

from apps.clinical.models import Appointment


ENDPOINT = '/api/appointments/'


def _payload(patient, doctor, day, start='10:00', **extra):
    data = {
        'patient_id': str(patient.id),
        'doctor_id': str(doctor.id),
        'appointment_date': day.isoformat(),
        'appointment_time': start,
        'duration_minutes': 30,
        'reason': 'Chest pain follow-up',
    }
    data.update(extra)
    return data


@pytest.mark.django_db
class TestAppointmentCreate:
    """Test POST /api/appointments/ - Book appointment."""

    def test_book_success(self, receptionist_client, patient, doctor, tomorrow):
        response = receptionist_client.post(ENDPOINT, _payload(patient, doctor, tomorrow), format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['success'] is True
        assert response.data['message'] == 'Appointment created successfully'
        data = response.data['data']
        assert data['status'] == 'scheduled'
        assert data['appointment_time'] == '10:00'
        assert data['end_time'] == '10:30'
        assert data['patient_number'] == patient.patient_number
        assert data['allowed_transitions'] == ['confirmed', 'cancelled', 'no_show']

    def test_accepts_seconds_in_time(self, admin_client, patient, doctor, tomorrow):
        response = admin_client.post(
            ENDPOINT, _payload(patient, doctor, tomorrow, start='11:00:00'), format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED

    def test_overlap_by_seconds_returns_409(self, admin_client, patient, doctor, tomorrow):
        first = admin_client.post(
            ENDPOINT, _payload(patient, doctor, tomorrow, start='10:00:30'), format='json'
        )
        second = admin_client.post(
            ENDPOINT, _payload(patient, doctor, tomorrow, start='10:30'), format='json'
        )

        assert first.status_code == status.HTTP_201_CREATED
        assert second.status_code == status.HTTP_409_CONFLICT
        assert Appointment.objects.count() == 1

    def test_overlap_returns_409(self, admin_client, appointment, patient, doctor, tomorrow):
        response = admin_client.post(
            ENDPOINT, _payload(patient, doctor, tomorrow, start='10:15'), format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['success'] is False
        assert response.data['message'] == 'Appointment time conflicts with an existing appointment'
        assert response.data['errors'][0]['field'] == 'appointment_time'
        assert Appointment.objects.count() == 1

    @pytest.mark.parametrize('start', ['10:30', '09:30'])
    def test_touching_slots_are_bookable(self, admin_client, appointment, patient, doctor, tomorrow, start):
        response = admin_client.post(
            ENDPOINT, _payload(patient, doctor, tomorrow, start=start), format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED

    def test_unknown_doctor_returns_404(self, admin_client, patient, tomorrow, doctor):
        payload = _payload(patient, doctor, tomorrow, doctor_id='00000000-0000-0000-0000-000000000000')

        response = admin_client.post(ENDPOINT, payload, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data == {'success': False, 'message': 'Doctor not found'}

    def test_unknown_patient_returns_404(self, admin_client, doctor, tomorrow, patient):
        payload = _payload(patient, doctor, tomorrow, patient_id='00000000-0000-0000-0000-000000000000')

        response = admin_client.post(ENDPOINT, payload, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['message'] == 'Patient not found'

    def test_validation_errors_are_listed_per_field(self, admin_client):
        response = admin_client.post(ENDPOINT, {'appointment_time': '25:99', 'reason': 'x'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['success'] is False
        assert response.data['message'] == 'Validation failed'
        fields = {e['field'] for e in response.data['errors']}
        assert {'patient_id', 'doctor_id', 'appointment_date', 'appointment_time', 'reason'} <= fields

    def test_past_date_rejected(self, admin_client, patient, doctor):
        yesterday = timezone.localdate() - timedelta(days=1)

        response = admin_client.post(ENDPOINT, _payload(patient, doctor, yesterday), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'appointment_date'

    @pytest.mark.parametrize('duration', [5, 300])
    def test_duration_bounds(self, admin_client, patient, doctor, tomorrow, duration):
        response = admin_client.post(
            ENDPOINT, _payload(patient, doctor, tomorrow, duration_minutes=duration), format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestAppointmentList:
    """Test GET /api/appointments/ - List and filter appointments."""

    def test_list_with_pagination_meta(self, admin_client, appointment_factory):
        for hour in range(9, 12):
            appointment_factory(appointment_time=time(hour, 0))

        response = admin_client.get(f'{ENDPOINT}?limit=2')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['success'] is True
        assert len(response.data['data']) == 2
        assert response.data['pagination'] == {'page': 1, 'limit': 2, 'total': 3, 'pages': 2}

    def test_page_past_the_end_is_empty(self, admin_client, appointment):
        response = admin_client.get(f'{ENDPOINT}?page=5')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data'] == []
        assert response.data['pagination']['total'] == 1

    def test_limit_above_maximum_rejected(self, admin_client):
        response = admin_client.get(f'{ENDPOINT}?limit=101')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'limit'

    def test_filter_by_status(self, admin_client, appointment_factory):
        appointment_factory(appointment_time=time(9, 0), status='scheduled')
        appointment_factory(appointment_time=time(11, 0), status='cancelled')

        response = admin_client.get(f'{ENDPOINT}?status=cancelled')

        statuses = [a['status'] for a in response.data['data']]
        assert statuses == ['cancelled']

    def test_filter_by_date_and_doctor(self, admin_client, appointment_factory, doctor_factory, tomorrow):
        other = doctor_factory()
        mine = appointment_factory()
        appointment_factory(doctor=other)
        appointment_factory(appointment_date=tomorrow + timedelta(days=1))

        response = admin_client.get(
            f'{ENDPOINT}?date={tomorrow.isoformat()}&doctor_id={mine.doctor_id}'
        )

        assert [a['id'] for a in response.data['data']] == [str(mine.id)]

    def test_invalid_filter_values_rejected(self, admin_client):
        assert admin_client.get(f'{ENDPOINT}?status=sleeping').status_code == 400
        assert admin_client.get(f'{ENDPOINT}?date=tomorrow').status_code == 400
        assert admin_client.get(f'{ENDPOINT}?doctor_id=abc').status_code == 400

    def test_today(self, nurse_client, appointment_factory):
        today = timezone.localdate()
        todays = appointment_factory(appointment_date=today, appointment_time=time(8, 0))
        appointment_factory()

        response = nurse_client.get(f'{ENDPOINT}today/')

        assert response.status_code == status.HTTP_200_OK
        assert [a['id'] for a in response.data['data']] == [str(todays.id)]
        assert response.data['count'] == 1


@pytest.mark.django_db
class TestAppointmentUpdate:
    """Test PUT/PATCH /api/appointments/{id}/ - Update / reschedule."""

    def test_reschedule(self, admin_client, appointment):
        response = admin_client.patch(
            f'{ENDPOINT}{appointment.id}/', {'appointment_time': '15:00'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['appointment_time'] == '15:00'

    def test_reschedule_into_conflict(self, admin_client, appointment_factory):
        appointment_factory(appointment_time=time(9, 0))
        movable = appointment_factory(appointment_time=time(14, 0))

        response = admin_client.put(
            f'{ENDPOINT}{movable.id}/', {'appointment_time': '09:15'}, format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_no_valid_fields(self, admin_client, appointment):
        response = admin_client.put(f'{ENDPOINT}{appointment.id}/', {'colour': 'blue'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['message'] == 'No valid fields to update'

    def test_unknown_appointment(self, admin_client):
        response = admin_client.put(
            f'{ENDPOINT}00000000-0000-0000-0000-000000000000/', {'notes': 'x'}, format='json'
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['message'] == 'Appointment not found'


@pytest.mark.django_db
class TestAppointmentCancel:
    """Test DELETE /api/appointments/{id}/ - Soft cancel."""

    def test_cancel_keeps_row(self, receptionist_client, appointment):
        response = receptionist_client.delete(
            f'{ENDPOINT}{appointment.id}/', {'reason': 'Patient travelling'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['message'] == 'Appointment cancelled successfully'
        appointment.refresh_from_db()
        assert appointment.status == 'cancelled'
        assert 'Cancellation reason: Patient travelling' in appointment.notes

    def test_cancel_twice_succeeds(self, admin_client, appointment):
        admin_client.delete(f'{ENDPOINT}{appointment.id}/')
        response = admin_client.delete(f'{ENDPOINT}{appointment.id}/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['status'] == 'cancelled'

    def test_cancelled_slot_rebookable(self, admin_client, appointment, patient, doctor, tomorrow):
        admin_client.delete(f'{ENDPOINT}{appointment.id}/')

        response = admin_client.post(ENDPOINT, _payload(patient, doctor, tomorrow), format='json')

        assert response.status_code == status.HTTP_201_CREATED

    def test_cancel_completed_is_rejected(self, admin_client, appointment_factory):
        done = appointment_factory(status='completed')

        response = admin_client.delete(f'{ENDPOINT}{done.id}/')

        assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.django_db
class TestAppointmentStatus:
    """Test POST /api/appointments/{id}/status/ - Status transitions."""

    def test_confirm(self, doctor_client, appointment):
        response = doctor_client.post(
            f'{ENDPOINT}{appointment.id}/status/', {'status': 'confirmed'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['status'] == 'confirmed'
        assert response.data['data']['allowed_transitions'] == ['in_progress', 'cancelled', 'no_show']

    def test_complete_with_notes(self, doctor_client, appointment_factory):
        visit = appointment_factory(status='in_progress')

        response = doctor_client.post(
            f'{ENDPOINT}{visit.id}/status/',
            {'status': 'completed', 'notes': 'Review in 2 weeks'},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['notes'] == 'Review in 2 weeks'

    def test_invalid_transition_409(self, admin_client, appointment):
        response = admin_client.post(
            f'{ENDPOINT}{appointment.id}/status/', {'status': 'completed'}, format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['message'] == "Cannot change appointment status from 'scheduled' to 'completed'"

    def test_unknown_status_400(self, admin_client, appointment):
        response = admin_client.post(
            f'{ENDPOINT}{appointment.id}/status/', {'status': 'paused'}, format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'status'


@pytest.mark.django_db
class TestAppointmentPermissions:

    def test_pharmacist_has_no_access(self, pharmacist_client, appointment):
        assert pharmacist_client.get(ENDPOINT).status_code == status.HTTP_403_FORBIDDEN

    def test_patient_has_no_access(self, patient_client, appointment):
        assert patient_client.get(f'{ENDPOINT}{appointment.id}/').status_code == status.HTTP_403_FORBIDDEN

    def test_anonymous_is_unauthorized(self, api_client):
        response = api_client.get(ENDPOINT)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['success'] is False
