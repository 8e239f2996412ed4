"""
Tests for AppointmentService: booking, rescheduling and the status machine.
"""
from datetime import time, timedelta

import pytest

from apps.clinical.models import Appointment
from apps.clinical.services import AppointmentService
from apps.core.exceptions import ConflictError, InvalidTransition, NotFoundError, ValidationFailed
from apps.core.observability.metrics import metrics


def _counter(counter, **labels):
    return counter.labels(**labels)._value.get()


@pytest.fixture
def service(gateway):
    return AppointmentService(gateway)


@pytest.fixture
def book(service, patient, doctor, tomorrow):
    def _book(start, duration=30, **kwargs):
        return service.create(
            patient_id=kwargs.pop('patient_id', patient.id),
            doctor_id=kwargs.pop('doctor_id', doctor.id),
            appointment_date=kwargs.pop('appointment_date', tomorrow),
            appointment_time=start,
            duration_minutes=duration,
            reason=kwargs.pop('reason', 'Consultation'),
            **kwargs
        )
    return _book


@pytest.mark.django_db
class TestBooking:

    def test_booking_creates_scheduled_appointment(self, book, patient, doctor):
        appointment = book(time(10, 0))

        assert appointment.status == 'scheduled'
        assert appointment.patient_id == patient.id
        assert appointment.doctor_id == doctor.id
        assert appointment.duration_minutes == 30

    def test_default_duration_from_settings(self, service, patient, doctor, tomorrow, settings):
        settings.HMIS_DEFAULT_APPOINTMENT_DURATION = 45

        appointment = service.create(patient.id, doctor.id, tomorrow, time(9, 0))

        assert appointment.duration_minutes == 45

    def test_scenario_overlap_abut_and_touching_before(self, book):
        """10:00 for 30 booked; 10:15 conflicts, 10:30 and 09:30 succeed."""
        book(time(10, 0))

        with pytest.raises(ConflictError):
            book(time(10, 15))

        assert book(time(10, 30)).appointment_time == time(10, 30)
        assert book(time(9, 30)).appointment_time == time(9, 30)
        assert Appointment.objects.count() == 3

    def test_contained_booking_fails(self, book):
        book(time(10, 0), duration=60)

        with pytest.raises(ConflictError) as exc_info:
            book(time(10, 15), duration=15)

        assert exc_info.value.status_code == 409
        assert exc_info.value.errors[0]['field'] == 'appointment_time'

    def test_conflict_leaves_no_row_and_counts_metric(self, book):
        book(time(10, 0))
        before = _counter(metrics.appointment_conflicts_total, operation='create')

        with pytest.raises(ConflictError):
            book(time(10, 0))

        assert Appointment.objects.count() == 1
        assert _counter(metrics.appointment_conflicts_total, operation='create') == before + 1

    def test_cancelled_slot_can_be_rebooked(self, book, service):
        first = book(time(10, 0))
        service.update_status(first.id, 'cancelled')

        second = book(time(10, 0))

        assert second.id != first.id

    def test_unknown_patient_is_not_found(self, book):
        with pytest.raises(NotFoundError) as exc_info:
            book(time(10, 0), patient_id='00000000-0000-0000-0000-000000000000')

        assert exc_info.value.message == 'Patient not found'

    def test_inactive_patient_is_not_found(self, book, patient):
        patient.user.deactivate()

        with pytest.raises(NotFoundError):
            book(time(10, 0))

    def test_unknown_doctor_is_not_found(self, book):
        with pytest.raises(NotFoundError) as exc_info:
            book(time(10, 0), doctor_id='00000000-0000-0000-0000-000000000000')

        assert exc_info.value.message == 'Doctor not found'

    def test_inactive_doctor_is_not_bookable(self, book, doctor):
        doctor.is_active = False
        doctor.save()

        with pytest.raises(NotFoundError):
            book(time(10, 0))

    @pytest.mark.parametrize('duration', [0, 10, 241])
    def test_duration_out_of_bounds(self, book, duration):
        with pytest.raises(ValidationFailed) as exc_info:
            book(time(10, 0), duration=duration)

        assert exc_info.value.errors[0]['field'] == 'duration_minutes'


@pytest.mark.django_db
class TestReschedule:

    def test_reschedule_ignores_itself(self, service, appointment):
        moved = service.update_schedule(appointment.id, appointment_time=time(10, 15))

        assert moved.appointment_time == time(10, 15)

    def test_reschedule_into_busy_slot_conflicts(self, service, appointment_factory):
        appointment_factory(appointment_time=time(11, 0))
        movable = appointment_factory(appointment_time=time(9, 0))

        with pytest.raises(ConflictError):
            service.update_schedule(movable.id, appointment_time=time(11, 15))

        movable.refresh_from_db()
        assert movable.appointment_time == time(9, 0)

    def test_reschedule_to_another_day(self, service, appointment):
        new_day = appointment.appointment_date + timedelta(days=3)

        moved = service.update_schedule(appointment.id, appointment_date=new_day)

        assert moved.appointment_date == new_day

    def test_reschedule_terminal_appointment_rejected(self, service, appointment_factory):
        done = appointment_factory(status='completed')

        with pytest.raises(ConflictError):
            service.update_schedule(done.id, appointment_time=time(15, 0))

    def test_unchanged_schedule_is_a_no_op(self, service, appointment):
        result = service.update_schedule(appointment.id, appointment_time=appointment.appointment_time)

        assert result.appointment_time == appointment.appointment_time


@pytest.mark.django_db
class TestStatusMachine:

    def test_happy_path_to_completed(self, service, appointment):
        for status in ['confirmed', 'in_progress', 'completed']:
            appointment = service.update_status(appointment.id, status)

        assert appointment.status == 'completed'
        assert appointment.is_terminal

    @pytest.mark.parametrize('start, target', [
        ('scheduled', 'in_progress'),
        ('scheduled', 'completed'),
        ('confirmed', 'scheduled'),
        ('completed', 'cancelled'),
        ('no_show', 'confirmed'),
        ('cancelled', 'scheduled'),
    ])
    def test_disallowed_transitions(self, service, appointment_factory, start, target):
        appointment = appointment_factory(status=start)

        with pytest.raises(InvalidTransition) as exc_info:
            service.update_status(appointment.id, target)

        assert exc_info.value.status_code == 409
        appointment.refresh_from_db()
        assert appointment.status == start

    def test_unknown_status_is_validation_error(self, service, appointment):
        with pytest.raises(ValidationFailed):
            service.update_status(appointment.id, 'teleported')

    def test_cancel_twice_is_idempotent(self, service, appointment):
        service.cancel(appointment.id, reason='Patient unwell')
        again = service.cancel(appointment.id, reason='Patient unwell')

        assert again.status == 'cancelled'
        assert again.notes.count('Cancellation reason: Patient unwell') == 1

    def test_cancel_records_reason_in_notes(self, service, appointment_factory):
        appointment = appointment_factory(notes='Bring previous results')

        cancelled = service.cancel(appointment.id, reason='Doctor unavailable')

        assert cancelled.notes == 'Bring previous results\nCancellation reason: Doctor unavailable'

    def test_complete_appends_notes(self, service, appointment_factory):
        appointment = appointment_factory(status='in_progress')

        completed = service.complete(appointment.id, notes='Prescribed rest')

        assert completed.status == 'completed'
        assert completed.notes == 'Prescribed rest'

    def test_complete_requires_in_progress(self, service, appointment):
        with pytest.raises(InvalidTransition):
            service.complete(appointment.id)

    def test_unknown_appointment(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.update_status('00000000-0000-0000-0000-000000000000', 'confirmed')

        assert exc_info.value.message == 'Appointment not found'

    def test_transition_metrics(self, service, appointment):
        before = _counter(
            metrics.appointment_transitions_total,
            from_status='scheduled', to_status='confirmed', result='success',
        )

        service.update_status(appointment.id, 'confirmed')

        assert _counter(
            metrics.appointment_transitions_total,
            from_status='scheduled', to_status='confirmed', result='success',
        ) == before + 1


@pytest.mark.django_db
class TestCombinedUpdate:

    def test_no_updatable_fields(self, service, appointment):
        with pytest.raises(ValidationFailed) as exc_info:
            service.update(appointment.id, {'patient_id': 'x'})

        assert exc_info.value.message == 'No valid fields to update'

    def test_updates_schedule_status_and_text(self, service, appointment):
        updated = service.update(appointment.id, {
            'appointment_time': time(14, 0),
            'status': 'confirmed',
            'reason': 'Follow-up',
            'notes': 'Fasting required',
        })

        updated.refresh_from_db()
        assert updated.appointment_time == time(14, 0)
        assert updated.status == 'confirmed'
        assert updated.reason == 'Follow-up'
        assert updated.notes == 'Fasting required'

    def test_failed_transition_rolls_back_schedule_change(self, service, appointment):
        with pytest.raises(InvalidTransition):
            service.update(appointment.id, {'appointment_time': time(14, 0), 'status': 'completed'})

        appointment.refresh_from_db()
        assert appointment.appointment_time == time(10, 0)
        assert appointment.status == 'scheduled'
