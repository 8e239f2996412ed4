"""
Integration tests for medical records and prescriptions.

Covers authorship, patient links, the prescription lifecycle, role
access and the per-patient listings.
"""
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework import status

from apps.clinical.models import MedicalRecord, Prescription


RECORDS = '/api/medical-records/'
PRESCRIPTIONS = '/api/prescriptions/'
PATIENTS = '/api/patients/'


def _record_payload(patient, **extra):
    data = {
        'patient_id': str(patient.id),
        'diagnosis': 'Type 2 diabetes',
        'treatment': 'Metformin and dietary changes',
    }
    data.update(extra)
    return data


def _prescription_payload(patient, **extra):
    today = timezone.localdate()
    data = {
        'patient_id': str(patient.id),
        'medication': 'Metformin 500mg',
        'dosage': '500mg twice daily',
        'instructions': 'Take with meals',
        'start_date': today.isoformat(),
        'end_date': (today + timedelta(days=30)).isoformat(),
        'quantity': 60,
    }
    data.update(extra)
    return data


@pytest.mark.django_db
class TestMedicalRecordCreate:
    """Test POST /api/medical-records/."""

    def test_doctor_is_author_by_default(self, doctor_client, doctor, patient):
        response = doctor_client.post(RECORDS, _record_payload(patient), format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['message'] == 'Medical record created successfully'
        data = response.data['data']
        assert data['doctor_id'] == str(doctor.id)
        assert data['patient_number'] == patient.patient_number
        assert data['record_type'] == 'consultation'
        assert data['appointment_id'] is None

    def test_admin_must_name_the_doctor(self, admin_client, patient):
        response = admin_client.post(RECORDS, _record_payload(patient), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'doctor_id'
        assert MedicalRecord.objects.count() == 0

    def test_admin_with_doctor_id(self, admin_client, doctor, patient):
        response = admin_client.post(
            RECORDS, _record_payload(patient, doctor_id=str(doctor.id)), format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['data']['doctor_name'] == doctor.user.full_name

    def test_links_appointment_of_same_patient(self, doctor_client, patient, appointment):
        response = doctor_client.post(
            RECORDS, _record_payload(patient, appointment_id=str(appointment.id)), format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['data']['appointment_id'] == str(appointment.id)

    def test_rejects_appointment_of_other_patient(self, doctor_client, appointment, patient_factory):
        other = patient_factory()

        response = doctor_client.post(
            RECORDS, _record_payload(other, appointment_id=str(appointment.id)), format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0] == {
            'field': 'appointment_id',
            'message': 'Appointment belongs to another patient',
        }

    def test_unknown_patient_returns_404(self, doctor_client, patient):
        payload = _record_payload(patient, patient_id='00000000-0000-0000-0000-000000000000')

        response = doctor_client.post(RECORDS, payload, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['message'] == 'Patient not found'

    def test_requires_diagnosis_and_treatment(self, doctor_client, patient):
        response = doctor_client.post(RECORDS, {'patient_id': str(patient.id)}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        fields = {e['field'] for e in response.data['errors']}
        assert fields == {'diagnosis', 'treatment'}

    def test_future_visit_date_rejected(self, doctor_client, patient):
        future = (timezone.now() + timedelta(days=2)).isoformat()

        response = doctor_client.post(
            RECORDS, _record_payload(patient, visit_date=future), format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'visit_date'

    def test_nurse_cannot_write(self, nurse_client, patient):
        response = nurse_client.post(RECORDS, _record_payload(patient), format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestMedicalRecordReadAndUpdate:

    def test_list_filters_by_patient_and_type(self, nurse_client, medical_record, patient, doctor):
        MedicalRecord.objects.create(
            patient=patient, doctor=doctor, record_type='follow_up',
            diagnosis='Hypertension', treatment='Continue',
        )

        response = nurse_client.get(f'{RECORDS}?patient_id={patient.id}&record_type=diagnosis')

        assert response.status_code == status.HTTP_200_OK
        assert [r['id'] for r in response.data['data']] == [str(medical_record.id)]
        assert response.data['pagination']['total'] == 1

    def test_invalid_record_type_filter(self, nurse_client):
        response = nurse_client.get(f'{RECORDS}?record_type=surgery')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'record_type'

    @pytest.mark.parametrize('client_fixture', ['receptionist_client', 'pharmacist_client', 'patient_client'])
    def test_non_clinical_roles_denied(self, request, client_fixture, medical_record):
        client = request.getfixturevalue(client_fixture)

        response = client.get(f'{RECORDS}{medical_record.id}/')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_amend_diagnosis(self, doctor_client, medical_record):
        response = doctor_client.patch(
            f'{RECORDS}{medical_record.id}/', {'diagnosis': 'Stage 1 hypertension'}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['diagnosis'] == 'Stage 1 hypertension'
        medical_record.refresh_from_db()
        assert medical_record.treatment == 'Lifestyle changes and medication'

    def test_empty_amendment_rejected(self, doctor_client, medical_record):
        response = doctor_client.patch(f'{RECORDS}{medical_record.id}/', {}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['message'] == 'No valid fields to update'

    def test_records_cannot_be_deleted(self, admin_client, medical_record):
        response = admin_client.delete(f'{RECORDS}{medical_record.id}/')

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert MedicalRecord.objects.filter(pk=medical_record.pk).exists()

    def test_unknown_record_returns_404(self, doctor_client):
        response = doctor_client.get(f'{RECORDS}00000000-0000-0000-0000-000000000000/')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['message'] == 'Medical record not found'


@pytest.mark.django_db
class TestPrescriptionCreate:
    """Test POST /api/prescriptions/."""

    def test_created_pending(self, doctor_client, doctor, patient, medical_record):
        response = doctor_client.post(
            PRESCRIPTIONS,
            _prescription_payload(patient, medical_record_id=str(medical_record.id)),
            format='json',
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.data['data']
        assert data['status'] == 'pending'
        assert data['allowed_transitions'] == ['active', 'cancelled']
        assert data['doctor_id'] == str(doctor.id)
        assert data['medical_record_id'] == str(medical_record.id)

    def test_status_in_payload_is_ignored(self, doctor_client, patient):
        response = doctor_client.post(
            PRESCRIPTIONS, _prescription_payload(patient, status='completed'), format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['data']['status'] == 'pending'

    def test_end_date_before_start_date(self, doctor_client, patient):
        today = timezone.localdate()
        payload = _prescription_payload(patient, end_date=(today - timedelta(days=1)).isoformat())

        response = doctor_client.post(PRESCRIPTIONS, payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'end_date'

    @pytest.mark.parametrize('field, value', [
        ('quantity', 0),
        ('start_date', 'not-a-date'),
        ('medication', ''),
    ])
    def test_invalid_values(self, doctor_client, patient, field, value):
        response = doctor_client.post(
            PRESCRIPTIONS, _prescription_payload(patient, **{field: value}), format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == field

    def test_rejects_record_of_other_patient(self, doctor_client, medical_record, patient_factory):
        other = patient_factory()

        response = doctor_client.post(
            PRESCRIPTIONS,
            _prescription_payload(other, medical_record_id=str(medical_record.id)),
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'medical_record_id'
        assert Prescription.objects.count() == 0

    def test_pharmacist_cannot_prescribe(self, pharmacist_client, patient, doctor):
        response = pharmacist_client.post(
            PRESCRIPTIONS, _prescription_payload(patient, doctor_id=str(doctor.id)), format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestPrescriptionUpdate:

    def url(self, prescription):
        return f'{PRESCRIPTIONS}{prescription.id}/'

    def test_pharmacist_activates(self, pharmacist_client, prescription):
        response = pharmacist_client.patch(self.url(prescription), {'status': 'active'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['status'] == 'active'
        assert response.data['data']['allowed_transitions'] == ['completed', 'cancelled']

    def test_pharmacist_cannot_amend_dosage(self, pharmacist_client, prescription):
        response = pharmacist_client.patch(self.url(prescription), {'dosage': '20mg'}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        prescription.refresh_from_db()
        assert prescription.dosage == '10mg once daily'

    def test_doctor_amends_dosage(self, doctor_client, prescription):
        response = doctor_client.patch(
            self.url(prescription), {'dosage': '20mg once daily', 'quantity': 30}, format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data']['dosage'] == '20mg once daily'
        assert response.data['data']['quantity'] == 30

    def test_terminal_status_cannot_change(self, doctor_client, prescription):
        prescription.status = 'completed'
        prescription.save()

        response = doctor_client.patch(self.url(prescription), {'status': 'active'}, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['message'] == "Cannot change prescription status from 'completed' to 'active'"

    def test_end_date_checked_against_stored_start(self, doctor_client, prescription):
        earlier = (prescription.start_date - timedelta(days=1)).isoformat()

        response = doctor_client.patch(self.url(prescription), {'end_date': earlier}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['errors'][0]['field'] == 'end_date'

    def test_status_filter(self, nurse_client, prescription):
        response = nurse_client.get(f'{PRESCRIPTIONS}?status=pending')

        assert response.status_code == status.HTTP_200_OK
        assert [p['id'] for p in response.data['data']] == [str(prescription.id)]

    def test_receptionist_denied(self, receptionist_client, prescription):
        response = receptionist_client.get(self.url(prescription))

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestPatientClinicalHistory:
    """Test GET /api/patients/{id}/medical-records/ and /prescriptions/."""

    def test_lists_patient_records(self, doctor_client, patient, medical_record, patient_factory, doctor):
        other = patient_factory()
        MedicalRecord.objects.create(
            patient=other, doctor=doctor, diagnosis='Flu', treatment='Rest'
        )

        response = doctor_client.get(f'{PATIENTS}{patient.id}/medical-records/')

        assert response.status_code == status.HTTP_200_OK
        assert [r['id'] for r in response.data['data']] == [str(medical_record.id)]
        assert response.data['pagination']['total'] == 1

    def test_receptionist_cannot_list_records(self, receptionist_client, patient):
        response = receptionist_client.get(f'{PATIENTS}{patient.id}/medical-records/')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_pharmacist_lists_prescriptions(self, pharmacist_client, patient, prescription):
        response = pharmacist_client.get(f'{PATIENTS}{patient.id}/prescriptions/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['data'][0]['medication'] == 'Lisinopril 10mg'

    def test_unknown_patient_returns_404(self, doctor_client):
        response = doctor_client.get(f'{PATIENTS}00000000-0000-0000-0000-000000000000/prescriptions/')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['message'] == 'Patient not found'
