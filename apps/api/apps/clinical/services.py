"""
Clinical workflow services.

- ConflictChecker: doctor double-booking detection (half-open intervals)
- AppointmentService: booking, rescheduling and status transitions
- PatientRegistrationService: User + Patient creation in one transaction
- ClinicalRecordService: medical records and prescriptions

Every service takes a ``DatabaseGateway``; nothing here touches the global
connection directly.
"""
import logging
from datetime import date as date_class, time as time_class
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError

from apps.authz.models import RoleChoices, Staff, User
from apps.clinical.models import (
    MAX_APPOINTMENT_MINUTES,
    MIN_APPOINTMENT_MINUTES,
    PATIENT_NUMBER_PREFIX,
    PATIENT_NUMBER_SEQUENCE,
    PATIENT_NUMBER_WIDTH,
    Appointment,
    AppointmentStatusChoices,
    MedicalRecord,
    Patient,
    Prescription,
    PrescriptionStatusChoices,
)
from apps.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationFailed,
)
from apps.core.gateway import get_gateway
from apps.core.observability import metrics
from apps.core.observability.events import (
    log_appointment_booked,
    log_appointment_conflict,
    log_appointment_rescheduled,
    log_appointment_transition,
    log_medical_record_saved,
    log_patient_registered,
    log_patient_registration_failed,
    log_prescription_saved,
)
from apps.core.sequences import next_identifier

logger = logging.getLogger(__name__)


_MINUTE = 60 * 1_000_000


def _micros(value: time_class) -> int:
    """Microseconds since midnight; TimeField keeps seconds and fractions."""
    return ((value.hour * 60 + value.minute) * 60 + value.second) * 1_000_000 + value.microsecond


def _clock(micros: int) -> str:
    seconds, micro = divmod(micros, 1_000_000)
    minutes, second = divmod(seconds, 60)
    value = time_class(minutes // 60, minutes % 60, second, micro)
    return value.isoformat(timespec='minutes' if not (second or micro) else 'auto')


def _field_error(field, message):
    return [{'field': field, 'message': message}]


def _validate_duration(duration_minutes):
    if not MIN_APPOINTMENT_MINUTES <= duration_minutes <= MAX_APPOINTMENT_MINUTES:
        raise ValidationFailed(errors=_field_error(
            'duration_minutes',
            f'Duration must be between {MIN_APPOINTMENT_MINUTES} and '
            f'{MAX_APPOINTMENT_MINUTES} minutes',
        ))


# ============================================================================
# Conflict detection
# ============================================================================

class ConflictChecker:
    """
    Detects overlapping bookings for a doctor on a given date.

    Intervals are half-open, ``[time, time + duration)``, so back-to-back
    appointments do not conflict. Only statuses in
    ``HMIS_BLOCKING_APPOINTMENT_STATUSES`` reserve time.
    """

    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    def booked_appointments(self, doctor_id, day: date_class, exclude_id=None):
        queryset = (
            self.gateway.objects(Appointment)
            .blocking()
            .for_doctor_on(doctor_id, day)
            .select_related('patient__user')
            .order_by('appointment_time')
        )
        if exclude_id is not None:
            queryset = queryset.exclude(pk=exclude_id)
        return list(queryset)

    def _overlapping(self, doctor_id, day, start_time, duration_minutes, exclude_id):
        proposed_start = _micros(start_time)
        proposed_end = proposed_start + duration_minutes * _MINUTE
        for appointment in self.booked_appointments(doctor_id, day, exclude_id):
            existing_start = _micros(appointment.appointment_time)
            existing_end = existing_start + appointment.duration_minutes * _MINUTE
            if existing_start < proposed_end and proposed_start < existing_end:
                yield appointment

    @metrics.track_duration(metrics.conflict_check_duration_seconds)
    def has_conflict(self, doctor_id, day: date_class, start_time: time_class,
                     duration_minutes: int, exclude_id=None) -> bool:
        """True as soon as one blocking appointment overlaps the proposed slot."""
        for _ in self._overlapping(doctor_id, day, start_time, duration_minutes, exclude_id):
            return True
        return False

    @metrics.track_duration(metrics.conflict_check_duration_seconds)
    def find_conflicts(self, doctor_id, day: date_class, start_time: time_class,
                       duration_minutes: int, exclude_id=None) -> List[Appointment]:
        """All blocking appointments overlapping the proposed slot."""
        return list(self._overlapping(doctor_id, day, start_time, duration_minutes, exclude_id))

    def free_slots(self, doctor_id, day: date_class, slot_minutes: Optional[int] = None,
                   day_start: Optional[time_class] = None,
                   day_end: Optional[time_class] = None) -> List[Dict[str, str]]:
        """
        Free slots of ``slot_minutes`` within working hours.

        After a busy period the next candidate slot starts where the busy
        period ends.
        """
        slot_minutes = slot_minutes or settings.HMIS_DEFAULT_APPOINTMENT_DURATION
        day_start = day_start or settings.HMIS_WORKING_HOURS_START
        day_end = day_end or settings.HMIS_WORKING_HOURS_END

        busy = [
            (_micros(a.appointment_time), _micros(a.appointment_time) + a.duration_minutes * _MINUTE)
            for a in self.booked_appointments(doctor_id, day)
        ]

        slots = []
        slot_length = slot_minutes * _MINUTE
        current = _micros(day_start)
        end_of_day = _micros(day_end)
        while current + slot_length <= end_of_day:
            slot_end = current + slot_length
            blocking = [b for b in busy if b[0] < slot_end and current < b[1]]
            if blocking:
                current = max(b[1] for b in blocking)
                continue
            slots.append({'start': _clock(current), 'end': _clock(slot_end)})
            current = slot_end
        return slots


# ============================================================================
# Appointments
# ============================================================================

class AppointmentService:
    """
    Appointment workflow.

    Booking and rescheduling lock the doctor's Staff row before the conflict
    check, so two concurrent bookings for the same doctor run one after the
    other and the second sees the first.
    """

    UPDATABLE_FIELDS = (
        'appointment_date',
        'appointment_time',
        'duration_minutes',
        'status',
        'reason',
        'notes',
    )

    def __init__(self, gateway=None, checker: Optional[ConflictChecker] = None):
        self.gateway = gateway or get_gateway()
        self.checker = checker or ConflictChecker(self.gateway)

    # ------------------------------------------------------------------
    # Lookups and locks
    # ------------------------------------------------------------------

    def get(self, appointment_id) -> Appointment:
        appointment = (
            self.gateway.objects(Appointment)
            .select_related('patient__user', 'doctor__user')
            .filter(pk=appointment_id)
            .first()
        )
        if appointment is None:
            raise NotFoundError('Appointment')
        return appointment

    def _lock_appointment(self, gw, appointment_id) -> Appointment:
        appointment = gw.objects(Appointment).select_for_update().filter(pk=appointment_id).first()
        if appointment is None:
            raise NotFoundError('Appointment')
        return appointment

    def _lock_doctor(self, gw, doctor_id, bookable=True) -> Staff:
        queryset = gw.objects(Staff).select_for_update(of=('self',))
        if bookable:
            queryset = queryset.doctors()
        doctor = queryset.filter(pk=doctor_id).first()
        if doctor is None:
            raise NotFoundError('Doctor')
        return doctor

    def _reject_conflict(self, doctor_id, day, start_time, duration, operation, exclude_id=None):
        conflicts = self.checker.find_conflicts(doctor_id, day, start_time, duration, exclude_id)
        if not conflicts:
            return
        metrics.appointment_conflicts_total.labels(operation=operation).inc()
        log_appointment_conflict(
            doctor_id, day, start_time, duration,
            operation=operation,
            conflicting_ids=[c.id for c in conflicts],
        )
        raise ConflictError(
            'Appointment time conflicts with an existing appointment',
            errors=[
                {
                    'field': 'appointment_time',
                    'message': (
                        f"Overlaps appointment {c.id} at {c.appointment_time:%H:%M} "
                        f"({c.duration_minutes} min)"
                    ),
                }
                for c in conflicts
            ],
        )

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def create(self, patient_id, doctor_id, appointment_date: date_class,
               appointment_time: time_class, duration_minutes: Optional[int] = None,
               reason: Optional[str] = None, notes: Optional[str] = None) -> Appointment:
        """
        Book an appointment in status ``scheduled``.

        Raises:
            NotFoundError: patient or doctor does not exist (or is inactive)
            ConflictError: the doctor already has an overlapping booking
        """
        if duration_minutes is None:
            duration_minutes = settings.HMIS_DEFAULT_APPOINTMENT_DURATION
        _validate_duration(duration_minutes)

        def _book(gw):
            if not gw.objects(Patient).active().filter(pk=patient_id).exists():
                raise NotFoundError('Patient')
            doctor = self._lock_doctor(gw, doctor_id)
            self._reject_conflict(doctor.id, appointment_date, appointment_time,
                                  duration_minutes, operation='create')
            return gw.objects(Appointment).create(
                patient_id=patient_id,
                doctor=doctor,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                duration_minutes=duration_minutes,
                status=AppointmentStatusChoices.SCHEDULED,
                reason=reason,
                notes=notes,
            )

        try:
            appointment = self.gateway.transaction(_book)
        except NotFoundError:
            metrics.appointments_booked_total.labels(result='not_found').inc()
            raise
        except ConflictError:
            metrics.appointments_booked_total.labels(result='conflict').inc()
            raise

        metrics.appointments_booked_total.labels(result='success').inc()
        log_appointment_booked(appointment)
        return appointment

    # ------------------------------------------------------------------
    # Rescheduling
    # ------------------------------------------------------------------

    def _apply_schedule(self, gw, appointment, appointment_date=None,
                        appointment_time=None, duration_minutes=None):
        """
        Move ``appointment`` (already locked) to a new slot.

        Returns the previous slot as a dict, or None when nothing changed.
        """
        new_date = appointment_date if appointment_date is not None else appointment.appointment_date
        new_time = appointment_time if appointment_time is not None else appointment.appointment_time
        new_duration = duration_minutes if duration_minutes is not None else appointment.duration_minutes

        if (new_date, new_time, new_duration) == (
            appointment.appointment_date, appointment.appointment_time, appointment.duration_minutes
        ):
            return None

        _validate_duration(new_duration)
        if appointment.is_terminal:
            raise ConflictError(f"Cannot reschedule a {appointment.status} appointment")

        self._lock_doctor(gw, appointment.doctor_id, bookable=False)
        self._reject_conflict(appointment.doctor_id, new_date, new_time, new_duration,
                              operation='reschedule', exclude_id=appointment.id)

        previous = {
            'appointment_date': appointment.appointment_date,
            'appointment_time': appointment.appointment_time,
            'duration_minutes': appointment.duration_minutes,
        }
        appointment.appointment_date = new_date
        appointment.appointment_time = new_time
        appointment.duration_minutes = new_duration
        return previous

    def update_schedule(self, appointment_id, appointment_date=None,
                        appointment_time=None, duration_minutes=None) -> Appointment:
        """
        Reschedule, re-running the conflict check against the new slot while
        ignoring the appointment itself.
        """
        def _reschedule(gw):
            appointment = self._lock_appointment(gw, appointment_id)
            previous = self._apply_schedule(gw, appointment, appointment_date,
                                            appointment_time, duration_minutes)
            if previous is not None:
                appointment.save(using=gw.alias)
            return appointment, previous

        appointment, previous = self.gateway.transaction(_reschedule)
        if previous is not None:
            log_appointment_rescheduled(appointment, previous)
        return appointment

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _apply_status(self, appointment, new_status, reason=None):
        """
        Validate and apply a transition on a locked appointment.

        Setting the current status again is a no-op and returns None.
        """
        if new_status not in AppointmentStatusChoices.values:
            raise ValidationFailed(errors=_field_error(
                'status',
                f"Invalid status. Must be one of: {', '.join(AppointmentStatusChoices.values)}",
            ))

        from_status = appointment.status
        if new_status == from_status:
            return None

        if not appointment.can_transition_to(new_status):
            metrics.appointment_transitions_total.labels(
                from_status=from_status, to_status=new_status, result='rejected'
            ).inc()
            log_appointment_transition(appointment, from_status, new_status, result='rejected')
            raise InvalidTransition(from_status, new_status)

        appointment.status = new_status
        if new_status == AppointmentStatusChoices.CANCELLED and reason:
            appointment.append_note(f'Cancellation reason: {reason}')
        return from_status, new_status

    def _record_transition(self, appointment, transition):
        if transition is None:
            return
        from_status, to_status = transition
        metrics.appointment_transitions_total.labels(
            from_status=from_status, to_status=to_status, result='success'
        ).inc()
        log_appointment_transition(appointment, from_status, to_status)

    def update_status(self, appointment_id, new_status, reason=None) -> Appointment:
        """
        Move an appointment through the status machine.

        Raises:
            NotFoundError: unknown appointment
            ValidationFailed: unknown status value
            InvalidTransition: transition not allowed from the current status
        """
        def _transition(gw):
            appointment = self._lock_appointment(gw, appointment_id)
            transition = self._apply_status(appointment, new_status, reason)
            if transition is not None:
                appointment.save(using=gw.alias, update_fields=['status', 'notes', 'updated_at'])
            return appointment, transition

        appointment, transition = self.gateway.transaction(_transition)
        self._record_transition(appointment, transition)
        return appointment

    def cancel(self, appointment_id, reason=None) -> Appointment:
        """Cancel; cancelling an already cancelled appointment changes nothing."""
        return self.update_status(appointment_id, AppointmentStatusChoices.CANCELLED, reason)

    def complete(self, appointment_id, notes=None) -> Appointment:
        """Mark an in-progress appointment completed, appending ``notes``."""
        def _complete(gw):
            appointment = self._lock_appointment(gw, appointment_id)
            transition = self._apply_status(appointment, AppointmentStatusChoices.COMPLETED)
            if notes:
                appointment.append_note(notes)
            if transition is not None or notes:
                appointment.save(using=gw.alias, update_fields=['status', 'notes', 'updated_at'])
            return appointment, transition

        appointment, transition = self.gateway.transaction(_complete)
        self._record_transition(appointment, transition)
        return appointment

    # ------------------------------------------------------------------
    # Combined update (PUT/PATCH)
    # ------------------------------------------------------------------

    def update(self, appointment_id, fields: Dict[str, Any]) -> Appointment:
        """
        Apply any of ``UPDATABLE_FIELDS`` in one transaction.

        Schedule changes are conflict-checked, status changes go through the
        transition table, reason/notes are copied as given.

        Raises:
            ValidationFailed: none of the updatable fields were supplied
        """
        changes = {k: v for k, v in fields.items() if k in self.UPDATABLE_FIELDS}
        if not changes:
            raise ValidationFailed('No valid fields to update')

        def _update(gw):
            appointment = self._lock_appointment(gw, appointment_id)
            previous = self._apply_schedule(
                gw,
                appointment,
                changes.get('appointment_date'),
                changes.get('appointment_time'),
                changes.get('duration_minutes'),
            )
            transition = None
            if 'status' in changes:
                transition = self._apply_status(appointment, changes['status'])
            for field in ('reason', 'notes'):
                if field in changes:
                    setattr(appointment, field, changes[field])
            appointment.save(using=gw.alias)
            return appointment, previous, transition

        appointment, previous, transition = self.gateway.transaction(_update)
        if previous is not None:
            log_appointment_rescheduled(appointment, previous)
        self._record_transition(appointment, transition)
        return appointment


# ============================================================================
# Patients
# ============================================================================

class PatientRegistrationService:
    """
    Patient registration and maintenance.

    Registration creates the User (role=patient) and the Patient row in one
    transaction; a failure at any step leaves neither behind.
    """

    USER_FIELDS = ('first_name', 'last_name', 'email', 'phone', 'is_active')
    PATIENT_FIELDS = (
        'date_of_birth',
        'gender',
        'blood_type',
        'address',
        'allergies',
        'medical_history',
        'insurance_provider',
        'insurance_number',
        'emergency_contact_name',
        'emergency_contact_phone',
    )

    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    def get(self, patient_id) -> Patient:
        patient = self.gateway.objects(Patient).select_related('user').filter(pk=patient_id).first()
        if patient is None:
            raise NotFoundError('Patient')
        return patient

    def _ensure_unique_identity(self, email, username, exclude_user_id=None):
        users = self.gateway.objects(User)
        if exclude_user_id is not None:
            users = users.exclude(pk=exclude_user_id)
        if email and users.filter(email__iexact=email).exists():
            raise ConflictError(
                'User with this email already exists',
                errors=_field_error('email', 'A user with this email already exists'),
            )
        if username and users.filter(username__iexact=username).exists():
            raise ConflictError(
                'User with this username already exists',
                errors=_field_error('username', 'A user with this username already exists'),
            )

    def _highest_patient_number(self, gw) -> int:
        """Seed for the patient-number sequence from rows created before it existed."""
        last = (
            gw.objects(Patient)
            .filter(patient_number__startswith=PATIENT_NUMBER_PREFIX)
            .order_by('-patient_number')
            .values_list('patient_number', flat=True)
            .first()
        )
        if not last:
            return 0
        try:
            return int(last[len(PATIENT_NUMBER_PREFIX):])
        except ValueError:
            return gw.objects(Patient).count()

    def _create_patient_row(self, gw, user, patient_number, profile) -> Patient:
        return gw.objects(Patient).create(
            user=user,
            patient_number=patient_number,
            **{field: profile.get(field) for field in self.PATIENT_FIELDS}
        )

    def register_patient(self, demographics: Dict[str, Any]) -> Patient:
        """
        Create a patient user and its Patient record.

        ``demographics`` holds the user fields (first_name, last_name, email,
        phone, optional username/password) and any of ``PATIENT_FIELDS``.
        Without a password the configured default is used and the user must
        change it at first login.

        Raises:
            ConflictError: email or username already taken
        """
        email = User.objects.normalize_email(demographics['email']).lower()
        username = demographics.get('username') or email
        password = demographics.get('password')

        try:
            self._ensure_unique_identity(email, username)
        except ConflictError:
            metrics.patient_registrations_total.labels(result='conflict').inc()
            log_patient_registration_failed('duplicate_identity', result='conflict')
            raise

        def _register(gw):
            user = gw.objects(User).create_user(
                email=email,
                username=username,
                password=password or settings.HMIS_PATIENT_DEFAULT_PASSWORD,
                must_change_password=not password,
                role=RoleChoices.PATIENT,
                first_name=demographics.get('first_name', ''),
                last_name=demographics.get('last_name', ''),
                phone=demographics.get('phone') or '',
            )
            patient_number = next_identifier(
                gw,
                PATIENT_NUMBER_SEQUENCE,
                PATIENT_NUMBER_PREFIX,
                PATIENT_NUMBER_WIDTH,
                seed=lambda: self._highest_patient_number(gw),
            )
            return self._create_patient_row(gw, user, patient_number, demographics)

        try:
            patient = self.gateway.transaction(_register)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same identity
            metrics.patient_registrations_total.labels(result='conflict').inc()
            log_patient_registration_failed('integrity_error', result='conflict')
            raise ConflictError('Patient with this email or username already exists') from exc
        except Exception:
            metrics.patient_registrations_total.labels(result='failure').inc()
            log_patient_registration_failed('transaction_rolled_back')
            raise

        metrics.patient_registrations_total.labels(result='success').inc()
        log_patient_registered(patient)
        return patient

    def update_patient(self, patient_id, fields: Dict[str, Any]) -> Patient:
        """
        Update patient and linked user fields in one transaction.

        Raises:
            NotFoundError: unknown patient
            ValidationFailed: no updatable field supplied
            ConflictError: new email belongs to another user
        """
        user_changes = {k: v for k, v in fields.items() if k in self.USER_FIELDS}
        patient_changes = {k: v for k, v in fields.items() if k in self.PATIENT_FIELDS}
        if not user_changes and not patient_changes:
            raise ValidationFailed('No valid fields to update')

        if 'email' in user_changes:
            user_changes['email'] = User.objects.normalize_email(user_changes['email']).lower()

        def _update(gw):
            patient = gw.objects(Patient).select_for_update().filter(pk=patient_id).first()
            if patient is None:
                raise NotFoundError('Patient')
            user = gw.objects(User).select_for_update().get(pk=patient.user_id)

            if 'email' in user_changes:
                self._ensure_unique_identity(user_changes['email'], None, exclude_user_id=user.pk)

            if user_changes:
                for field, value in user_changes.items():
                    setattr(user, field, '' if value is None else value)
                user.save(using=gw.alias, update_fields=[*user_changes, 'updated_at'])

            if patient_changes:
                for field, value in patient_changes.items():
                    setattr(patient, field, value)
                patient.save(using=gw.alias, update_fields=[*patient_changes, 'updated_at'])

            patient.user = user
            return patient

        try:
            patient = self.gateway.transaction(_update)
        except IntegrityError as exc:
            raise ConflictError('User with this email already exists') from exc

        logger.info(
            'Patient updated',
            extra={
                'event': 'patient_updated',
                'patient_id': str(patient.id),
                'changed_fields': sorted([*user_changes, *patient_changes]),
            }
        )
        return patient

    def deactivate_patient(self, patient_id) -> Patient:
        """Soft delete: deactivate the linked user. Rows are kept."""
        def _deactivate(gw):
            patient = gw.objects(Patient).select_related('user').filter(pk=patient_id).first()
            if patient is None:
                raise NotFoundError('Patient')
            if patient.user.is_active:
                patient.user.deactivate(using=gw.alias)
            return patient

        patient = self.gateway.transaction(_deactivate)
        logger.info(
            'Patient deactivated',
            extra={'event': 'patient_deactivated', 'patient_id': str(patient.id)}
        )
        return patient

    def appointments_for(self, patient_id):
        """A patient's appointments, most recent first."""
        patient = self.get(patient_id)
        return (
            self.gateway.objects(Appointment)
            .filter(patient=patient)
            .select_related('doctor__user', 'patient__user')
            .order_by('-appointment_date', '-appointment_time')
        )



# ============================================================================
# Medical records and prescriptions
# ============================================================================

class ClinicalRecordService:
    """
    Medical records and prescriptions.

    Both are written by a doctor for a patient. When the caller is a doctor
    they are the author unless ``doctor_id`` names someone else; other
    roles must pass ``doctor_id``.
    """

    RECORD_FIELDS = ('record_type', 'visit_date', 'diagnosis', 'treatment', 'notes')
    PRESCRIPTION_FIELDS = (
        'medication',
        'dosage',
        'instructions',
        'start_date',
        'end_date',
        'quantity',
        'status',
    )

    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def records(self):
        return self.gateway.objects(MedicalRecord).select_related(
            'patient__user', 'doctor__user'
        )

    def prescriptions(self):
        return self.gateway.objects(Prescription).select_related(
            'patient__user', 'doctor__user'
        )

    def get_record(self, record_id) -> MedicalRecord:
        record = self.records().filter(pk=record_id).first()
        if record is None:
            raise NotFoundError('Medical record')
        return record

    def get_prescription(self, prescription_id) -> Prescription:
        prescription = self.prescriptions().filter(pk=prescription_id).first()
        if prescription is None:
            raise NotFoundError('Prescription')
        return prescription

    def records_for(self, patient_id):
        """A patient's medical records, most recent visit first."""
        PatientRegistrationService(self.gateway).get(patient_id)
        return self.records().filter(patient_id=patient_id).order_by('-visit_date', '-created_at')

    def prescriptions_for(self, patient_id):
        PatientRegistrationService(self.gateway).get(patient_id)
        return self.prescriptions().filter(patient_id=patient_id).order_by('-created_at')

    # ------------------------------------------------------------------
    # Shared checks
    # ------------------------------------------------------------------

    def _resolve_doctor(self, gw, author, doctor_id) -> Staff:
        doctors = gw.objects(Staff).doctors()
        if doctor_id is not None:
            doctor = doctors.filter(pk=doctor_id).first()
            if doctor is None:
                raise NotFoundError('Doctor')
            return doctor
        if getattr(author, 'role', None) == RoleChoices.DOCTOR:
            doctor = doctors.filter(user_id=author.pk).first()
            if doctor is not None:
                return doctor
        raise ValidationFailed(errors=_field_error('doctor_id', 'doctor_id is required'))

    def _active_patient(self, gw, patient_id) -> Patient:
        patient = gw.objects(Patient).active().filter(pk=patient_id).first()
        if patient is None:
            raise NotFoundError('Patient')
        return patient

    def _linked(self, gw, model, pk, patient, field, resource):
        """Optional link to another row of the same patient."""
        if pk is None:
            return None
        linked = gw.objects(model).filter(pk=pk).first()
        if linked is None:
            raise NotFoundError(resource)
        if linked.patient_id != patient.pk:
            raise ValidationFailed(errors=_field_error(
                field, f'{resource} belongs to another patient'
            ))
        return linked

    @staticmethod
    def _check_dates(start_date, end_date):
        if end_date is not None and start_date is not None and end_date < start_date:
            raise ValidationFailed(errors=_field_error(
                'end_date', 'End date cannot be before start date'
            ))

    # ------------------------------------------------------------------
    # Medical records
    # ------------------------------------------------------------------

    def create_record(self, author, patient_id, diagnosis, treatment, doctor_id=None,
                      appointment_id=None, **fields) -> MedicalRecord:
        """
        Raises:
            NotFoundError: patient, doctor or appointment does not exist
            ValidationFailed: no author doctor, or appointment of another patient
        """
        def _create(gw):
            patient = self._active_patient(gw, patient_id)
            doctor = self._resolve_doctor(gw, author, doctor_id)
            appointment = self._linked(
                gw, Appointment, appointment_id, patient, 'appointment_id', 'Appointment'
            )
            return gw.objects(MedicalRecord).create(
                patient=patient,
                doctor=doctor,
                appointment=appointment,
                diagnosis=diagnosis,
                treatment=treatment,
                **{k: v for k, v in fields.items() if k in self.RECORD_FIELDS and v is not None}
            )

        record = self.gateway.transaction(_create)
        metrics.clinical_entries_total.labels(kind='record', action='created').inc()
        log_medical_record_saved(record)
        return record

    def update_record(self, record_id, fields: Dict[str, Any]) -> MedicalRecord:
        changes = {k: v for k, v in fields.items() if k in self.RECORD_FIELDS}
        if not changes:
            raise ValidationFailed('No valid fields to update')

        def _update(gw):
            record = gw.objects(MedicalRecord).select_for_update().filter(pk=record_id).first()
            if record is None:
                raise NotFoundError('Medical record')
            for field, value in changes.items():
                setattr(record, field, value)
            record.save(update_fields=[*changes, 'updated_at'])
            return record

        record = self.gateway.transaction(_update)
        metrics.clinical_entries_total.labels(kind='record', action='updated').inc()
        log_medical_record_saved(record, action='updated')
        return self.get_record(record.pk)

    # ------------------------------------------------------------------
    # Prescriptions
    # ------------------------------------------------------------------

    def create_prescription(self, author, patient_id, medication, dosage, instructions,
                            start_date: date_class, end_date: Optional[date_class] = None,
                            quantity: Optional[int] = None, doctor_id=None,
                            medical_record_id=None) -> Prescription:
        """
        Write a prescription in status ``pending``.

        Raises:
            NotFoundError: patient, doctor or medical record does not exist
            ValidationFailed: end date before start date, no author doctor,
                or medical record of another patient
        """
        self._check_dates(start_date, end_date)

        def _create(gw):
            patient = self._active_patient(gw, patient_id)
            doctor = self._resolve_doctor(gw, author, doctor_id)
            record = self._linked(
                gw, MedicalRecord, medical_record_id, patient, 'medical_record_id', 'Medical record'
            )
            return gw.objects(Prescription).create(
                patient=patient,
                doctor=doctor,
                medical_record=record,
                medication=medication,
                dosage=dosage,
                instructions=instructions,
                start_date=start_date,
                end_date=end_date,
                quantity=quantity,
                status=PrescriptionStatusChoices.PENDING,
            )

        prescription = self.gateway.transaction(_create)
        metrics.clinical_entries_total.labels(kind='prescription', action='created').inc()
        log_prescription_saved(prescription)
        return prescription

    def update_prescription(self, prescription_id, fields: Dict[str, Any]) -> Prescription:
        """
        Amend a prescription and/or move it along its lifecycle.

        Raises:
            NotFoundError: unknown prescription
            ValidationFailed: nothing to update, or end date before start date
            InvalidTransition: status change not allowed from the current status
        """
        changes = {k: v for k, v in fields.items() if k in self.PRESCRIPTION_FIELDS}
        if not changes:
            raise ValidationFailed('No valid fields to update')

        def _update(gw):
            prescription = gw.objects(Prescription).select_for_update().filter(pk=prescription_id).first()
            if prescription is None:
                raise NotFoundError('Prescription')

            from_status = prescription.status
            new_status = changes.get('status', from_status)
            if new_status != from_status and not prescription.can_transition_to(new_status):
                raise InvalidTransition(from_status, new_status, entity='prescription')

            self._check_dates(
                changes.get('start_date', prescription.start_date),
                changes.get('end_date', prescription.end_date),
            )
            for field, value in changes.items():
                setattr(prescription, field, value)
            prescription.save(update_fields=[*changes, 'updated_at'])
            return prescription, from_status

        prescription, from_status = self.gateway.transaction(_update)
        metrics.clinical_entries_total.labels(kind='prescription', action='updated').inc()
        log_prescription_saved(
            prescription,
            action='updated',
            from_status=from_status if from_status != prescription.status else None,
        )
        return self.get_prescription(prescription.pk)
