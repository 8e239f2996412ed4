"""
Clinical models: patient, appointment, medical record, prescription
"""
import uuid
from datetime import date, datetime, timedelta

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone


# ============================================================================
# Enums
# ============================================================================

class GenderChoices(models.TextChoices):
    MALE = 'male', 'Male'
    FEMALE = 'female', 'Female'
    OTHER = 'other', 'Other'


class BloodTypeChoices(models.TextChoices):
    A_POS = 'A+', 'A+'
    A_NEG = 'A-', 'A-'
    B_POS = 'B+', 'B+'
    B_NEG = 'B-', 'B-'
    AB_POS = 'AB+', 'AB+'
    AB_NEG = 'AB-', 'AB-'
    O_POS = 'O+', 'O+'
    O_NEG = 'O-', 'O-'


class AppointmentStatusChoices(models.TextChoices):
    """
    Appointment status with allowed transitions:
    - scheduled -> confirmed | cancelled | no_show
    - confirmed -> in_progress | cancelled | no_show
    - in_progress -> completed | cancelled | no_show
    - completed, cancelled, no_show are terminal states
    """
    SCHEDULED = 'scheduled', 'Scheduled'
    CONFIRMED = 'confirmed', 'Confirmed'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    NO_SHOW = 'no_show', 'No Show'


class MedicalRecordTypeChoices(models.TextChoices):
    CONSULTATION = 'consultation', 'Consultation'
    DIAGNOSIS = 'diagnosis', 'Diagnosis'
    TREATMENT = 'treatment', 'Treatment'
    FOLLOW_UP = 'follow_up', 'Follow-up'


class PrescriptionStatusChoices(models.TextChoices):
    """
    Prescription lifecycle:
    - pending -> active | cancelled
    - active -> completed | cancelled
    - completed, cancelled are terminal states
    """
    PENDING = 'pending', 'Pending'
    ACTIVE = 'active', 'Active'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


MIN_APPOINTMENT_MINUTES = 15
MAX_APPOINTMENT_MINUTES = 240

PATIENT_NUMBER_PREFIX = 'PAT'
PATIENT_NUMBER_WIDTH = 6
PATIENT_NUMBER_SEQUENCE = 'patient_number'


def blocking_statuses():
    """Statuses that reserve a doctor's time slot."""
    configured = getattr(
        settings,
        'HMIS_BLOCKING_APPOINTMENT_STATUSES',
        [
            AppointmentStatusChoices.SCHEDULED,
            AppointmentStatusChoices.CONFIRMED,
            AppointmentStatusChoices.IN_PROGRESS,
        ],
    )
    return [str(s).strip() for s in configured if str(s).strip()]


# ============================================================================
# Patient
# ============================================================================

class PatientQuerySet(models.QuerySet):

    def active(self):
        return self.filter(user__is_active=True)

    def search(self, term):
        """Case-insensitive match on name, email, phone or patient number."""
        return self.filter(
            models.Q(user__first_name__icontains=term) |
            models.Q(user__last_name__icontains=term) |
            models.Q(user__email__icontains=term) |
            models.Q(user__phone__icontains=term) |
            models.Q(patient_number__icontains=term)
        )

    def find_by_patient_number(self, patient_number):
        return self.filter(patient_number=patient_number).first()


class Patient(models.Model):
    """
    Patient record extending a User one-to-one.

    ``patient_number`` (PAT + 6 digits) is assigned once at registration and
    never changes. Deactivation goes through the linked user.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='patient_profile'
    )
    patient_number = models.CharField(max_length=20, unique=True, editable=False)

    # Demographics
    date_of_birth = models.DateField(blank=True, null=True)
    gender = models.CharField(
        max_length=10,
        choices=GenderChoices.choices,
        blank=True,
        null=True
    )
    blood_type = models.CharField(
        max_length=3,
        choices=BloodTypeChoices.choices,
        blank=True,
        null=True
    )
    address = models.TextField(blank=True, null=True)

    # Medical metadata
    allergies = models.TextField(blank=True, null=True)
    medical_history = models.TextField(blank=True, null=True)
    insurance_provider = models.CharField(max_length=255, blank=True, null=True)
    insurance_number = models.CharField(max_length=100, blank=True, null=True)

    # Emergency contact
    emergency_contact_name = models.CharField(max_length=255, blank=True, null=True)
    emergency_contact_phone = models.CharField(max_length=30, blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PatientQuerySet.as_manager()

    class Meta:
        db_table = 'patients'
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        indexes = [
            models.Index(fields=['gender'], name='idx_patient_gender'),
            models.Index(fields=['blood_type'], name='idx_patient_blood_type'),
            models.Index(fields=['created_at'], name='idx_patient_created'),
        ]

    def __str__(self):
        return f"{self.patient_number} {self.full_name}"

    @property
    def full_name(self):
        return self.user.full_name

    @property
    def is_active(self):
        return self.user.is_active


# ============================================================================
# Appointment
# ============================================================================

class AppointmentQuerySet(models.QuerySet):

    def blocking(self):
        return self.filter(status__in=blocking_statuses())

    def for_doctor_on(self, doctor_id, day):
        return self.filter(doctor_id=doctor_id, appointment_date=day)

    def today(self):
        return self.filter(appointment_date=timezone.localdate())


class Appointment(models.Model):
    """
    Scheduled encounter between a patient and a doctor.

    Date and time are wall-clock values in the server's TIME_ZONE. Rows are
    never deleted: cancellation is a status change.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    doctor = models.ForeignKey(
        'authz.Staff',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    appointment_date = models.DateField()
    appointment_time = models.TimeField()
    duration_minutes = models.PositiveIntegerField(
        default=30,
        validators=[
            MinValueValidator(MIN_APPOINTMENT_MINUTES),
            MaxValueValidator(MAX_APPOINTMENT_MINUTES),
        ]
    )
    status = models.CharField(
        max_length=20,
        choices=AppointmentStatusChoices.choices,
        default=AppointmentStatusChoices.SCHEDULED
    )
    reason = models.TextField(blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AppointmentQuerySet.as_manager()

    class Meta:
        db_table = 'appointments'
        verbose_name = 'Appointment'
        verbose_name_plural = 'Appointments'
        indexes = [
            models.Index(fields=['doctor', 'appointment_date'], name='idx_appointment_doctor_date'),
            models.Index(fields=['patient'], name='idx_appointment_patient'),
            models.Index(fields=['appointment_date'], name='idx_appointment_date'),
            models.Index(fields=['status'], name='idx_appointment_status'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(duration_minutes__gt=0),
                name='chk_appointment_duration_positive',
            ),
        ]

    # Allowed status transitions
    _ALLOWED_TRANSITIONS = {
        'scheduled': ['confirmed', 'cancelled', 'no_show'],
        'confirmed': ['in_progress', 'cancelled', 'no_show'],
        'in_progress': ['completed', 'cancelled', 'no_show'],
        'completed': [],  # Terminal state
        'cancelled': [],  # Terminal state
        'no_show': [],    # Terminal state
    }

    def __str__(self):
        return f"Appointment {self.appointment_date} {self.appointment_time:%H:%M} - {self.patient_id}"

    @classmethod
    def allowed_transitions(cls, status):
        return cls._ALLOWED_TRANSITIONS.get(status, [])

    def can_transition_to(self, new_status):
        return new_status in self.allowed_transitions(self.status)

    @property
    def is_terminal(self):
        return not self.allowed_transitions(self.status)

    @property
    def is_active_booking(self):
        return self.status in blocking_statuses()

    @property
    def start_datetime(self):
        return datetime.combine(self.appointment_date, self.appointment_time)

    @property
    def end_datetime(self):
        return self.start_datetime + timedelta(minutes=self.duration_minutes)

    @property
    def end_time(self):
        # Wall-clock end; wraps past midnight like any time of day
        start = datetime.combine(date.min, self.appointment_time)
        return (start + timedelta(minutes=self.duration_minutes)).time()

    @property
    def is_today(self):
        return self.appointment_date == timezone.localdate()

    @property
    def is_past(self):
        now = timezone.localtime().replace(tzinfo=None)
        return self.end_datetime <= now

    def append_note(self, text):
        self.notes = f"{self.notes}\n{text}" if self.notes else text


# ============================================================================
# Medical records and prescriptions
# ============================================================================

class MedicalRecord(models.Model):
    """
    A doctor's clinical entry for a patient visit.

    Optionally tied to the appointment it documents. Records are amended,
    never deleted.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='medical_records'
    )
    doctor = models.ForeignKey(
        'authz.Staff',
        on_delete=models.PROTECT,
        related_name='medical_records'
    )
    appointment = models.ForeignKey(
        'Appointment',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='medical_records'
    )
    record_type = models.CharField(
        max_length=20,
        choices=MedicalRecordTypeChoices.choices,
        default=MedicalRecordTypeChoices.CONSULTATION
    )
    visit_date = models.DateTimeField(default=timezone.now)
    diagnosis = models.TextField()
    treatment = models.TextField()
    notes = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'medical_records'
        verbose_name = 'Medical Record'
        verbose_name_plural = 'Medical Records'
        indexes = [
            models.Index(fields=['patient', 'visit_date'], name='idx_record_patient_visit'),
            models.Index(fields=['doctor'], name='idx_record_doctor'),
            models.Index(fields=['record_type'], name='idx_record_type'),
        ]

    def __str__(self):
        return f"{self.get_record_type_display()} {self.visit_date:%Y-%m-%d} - {self.patient_id}"


class Prescription(models.Model):
    """
    Medication order written by a doctor.

    Created ``pending``; a pharmacist or the prescriber activates it and it
    ends ``completed`` or ``cancelled``.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(
        'Patient',
        on_delete=models.PROTECT,
        related_name='prescriptions'
    )
    doctor = models.ForeignKey(
        'authz.Staff',
        on_delete=models.PROTECT,
        related_name='prescriptions'
    )
    medical_record = models.ForeignKey(
        'MedicalRecord',
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name='prescriptions'
    )
    medication = models.CharField(max_length=255)
    dosage = models.CharField(max_length=255)
    instructions = models.TextField()
    start_date = models.DateField()
    end_date = models.DateField(blank=True, null=True)
    quantity = models.PositiveIntegerField(blank=True, null=True)
    status = models.CharField(
        max_length=20,
        choices=PrescriptionStatusChoices.choices,
        default=PrescriptionStatusChoices.PENDING
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'prescriptions'
        verbose_name = 'Prescription'
        verbose_name_plural = 'Prescriptions'
        indexes = [
            models.Index(fields=['patient'], name='idx_prescription_patient'),
            models.Index(fields=['doctor'], name='idx_prescription_doctor'),
            models.Index(fields=['status'], name='idx_prescription_status'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_date__isnull=True) | models.Q(end_date__gte=models.F('start_date')),
                name='chk_prescription_dates',
            ),
            models.CheckConstraint(
                condition=models.Q(quantity__isnull=True) | models.Q(quantity__gt=0),
                name='chk_prescription_quantity_positive',
            ),
        ]

    _ALLOWED_TRANSITIONS = {
        'pending': ['active', 'cancelled'],
        'active': ['completed', 'cancelled'],
        'completed': [],
        'cancelled': [],
    }

    def __str__(self):
        return f"{self.medication} ({self.dosage}) - {self.patient_id}"

    @classmethod
    def allowed_transitions(cls, status):
        return cls._ALLOWED_TRANSITIONS.get(status, [])

    def can_transition_to(self, new_status):
        return new_status in self.allowed_transitions(self.status)
