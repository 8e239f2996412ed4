"""
Domain events logging helpers.

Provides structured event logging for scheduling and registration.
"""
from typing import Dict, Optional

from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'appointment_booked')
        entity_type: Type of entity (e.g., 'Appointment', 'Patient')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, conflict, failure, ...)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'appointment_booked',
            entity_type='Appointment',
            entity_id=str(appointment.id),
            entity_ids={'doctor_id': str(appointment.doctor_id)},
            duration_minutes=30,
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['conflict', 'blocked', 'rejected']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_appointment_booked(appointment):
    log_domain_event(
        'appointment_booked',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        entity_ids={
            'patient_id': str(appointment.patient_id),
            'doctor_id': str(appointment.doctor_id),
        },
        appointment_date=str(appointment.appointment_date),
        appointment_time=str(appointment.appointment_time),
        duration_minutes=appointment.duration_minutes,
    )


def log_appointment_conflict(doctor_id, appointment_date, appointment_time,
                             duration_minutes, operation='create', conflicting_ids=None):
    """Log a booking or reschedule rejected because the doctor is busy."""
    log_domain_event(
        'appointment_conflict_blocked',
        entity_type='Staff',
        entity_id=str(doctor_id),
        result='conflict',
        operation=operation,
        appointment_date=str(appointment_date),
        appointment_time=str(appointment_time),
        duration_minutes=duration_minutes,
        conflicting_ids=[str(i) for i in (conflicting_ids or [])],
    )


def log_appointment_rescheduled(appointment, previous):
    """``previous`` holds the old date, time and duration as a dict."""
    log_domain_event(
        'appointment_rescheduled',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        entity_ids={'doctor_id': str(appointment.doctor_id)},
        previous={k: str(v) for k, v in previous.items()},
        appointment_date=str(appointment.appointment_date),
        appointment_time=str(appointment.appointment_time),
        duration_minutes=appointment.duration_minutes,
    )


def log_appointment_transition(appointment, from_status, to_status, result='success'):
    log_domain_event(
        'appointment_status_changed',
        entity_type='Appointment',
        entity_id=str(appointment.id),
        result=result,
        from_status=from_status,
        to_status=to_status,
    )


def log_patient_registered(patient):
    log_domain_event(
        'patient_registered',
        entity_type='Patient',
        entity_id=str(patient.id),
        entity_ids={'user_id': str(patient.user_id)},
        patient_number=patient.patient_number,
    )


def log_patient_registration_failed(reason, result='failure'):
    """result='conflict' is logged as patient_registration_conflict."""
    log_domain_event(
        'patient_registration_conflict' if result == 'conflict' else 'patient_registration_failed',
        entity_type='Patient',
        result=result,
        failure=reason,
    )


def log_medical_record_saved(record, action='created'):
    log_domain_event(
        f'medical_record_{action}',
        entity_type='MedicalRecord',
        entity_id=str(record.id),
        entity_ids={
            'patient_id': str(record.patient_id),
            'doctor_id': str(record.doctor_id),
        },
        record_type=record.record_type,
    )


def log_prescription_saved(prescription, action='created', from_status=None):
    """``from_status`` is set when the update moved the prescription along its lifecycle."""
    fields = {'status': prescription.status}
    if from_status is not None:
        fields['from_status'] = from_status
    log_domain_event(
        f'prescription_{action}',
        entity_type='Prescription',
        entity_id=str(prescription.id),
        entity_ids={
            'patient_id': str(prescription.patient_id),
            'doctor_id': str(prescription.doctor_id),
        },
        **fields
    )
