"""
Clinical serializers for Patient, Appointment, MedicalRecord and Prescription.

Write serializers only validate input; persistence goes through
``apps.clinical.services`` so registration and booking stay transactional.
"""
from django.core.validators import RegexValidator
from django.utils import timezone
from rest_framework import serializers

from apps.authz.models import RoleChoices
from apps.clinical.models import (
    MAX_APPOINTMENT_MINUTES,
    MIN_APPOINTMENT_MINUTES,
    Appointment,
    AppointmentStatusChoices,
    BloodTypeChoices,
    GenderChoices,
    MedicalRecord,
    MedicalRecordTypeChoices,
    Patient,
    Prescription,
    PrescriptionStatusChoices,
)

# E.164-ish: optional leading +, no leading zero, up to 15 digits
phone_validator = RegexValidator(
    regex=r'^\+?[1-9]\d{1,14}$',
    message='Please provide a valid phone number',
)

TIME_INPUT_FORMATS = ['%H:%M', '%H:%M:%S']

# Fields hidden from roles without clinical access
MEDICAL_FIELDS = ('allergies', 'medical_history')
NON_CLINICAL_ROLES = frozenset({RoleChoices.RECEPTIONIST, RoleChoices.PHARMACIST})


def _request_role(serializer):
    request = serializer.context.get('request')
    user = getattr(request, 'user', None)
    return getattr(user, 'role', None)


class NameField(serializers.CharField):
    def __init__(self, **kwargs):
        kwargs.setdefault('max_length', 50)
        kwargs.setdefault('trim_whitespace', True)
        super().__init__(**kwargs)


# ============================================================================
# Patients
# ============================================================================

class PatientListSerializer(serializers.ModelSerializer):
    """Serializer for Patient list view (limited fields)"""
    user_id = serializers.UUIDField(source='user.id', read_only=True)
    first_name = serializers.CharField(source='user.first_name', read_only=True)
    last_name = serializers.CharField(source='user.last_name', read_only=True)
    email = serializers.EmailField(source='user.email', read_only=True)
    phone = serializers.CharField(source='user.phone', read_only=True)
    is_active = serializers.BooleanField(source='user.is_active', read_only=True)

    class Meta:
        model = Patient
        fields = [
            'id',
            'user_id',
            'patient_number',
            'first_name',
            'last_name',
            'email',
            'phone',
            'date_of_birth',
            'gender',
            'blood_type',
            'is_active',
            'created_at',
        ]
        read_only_fields = fields


class PatientDetailSerializer(PatientListSerializer):
    """
    Full patient record.

    BUSINESS RULE: Receptionists and pharmacists do not see medical history
    or allergies.
    """

    class Meta(PatientListSerializer.Meta):
        fields = PatientListSerializer.Meta.fields + [
            'address',
            'allergies',
            'medical_history',
            'insurance_provider',
            'insurance_number',
            'emergency_contact_name',
            'emergency_contact_phone',
            'updated_at',
        ]
        read_only_fields = fields

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if _request_role(self) in NON_CLINICAL_ROLES:
            for field in MEDICAL_FIELDS:
                data.pop(field, None)
        return data


class PatientProfileFieldsMixin(serializers.Serializer):
    """Patient-table fields shared by registration and update."""
    blood_type = serializers.ChoiceField(
        choices=BloodTypeChoices.choices, required=False, allow_null=True
    )
    address = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    allergies = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    medical_history = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    insurance_provider = serializers.CharField(
        max_length=255, required=False, allow_blank=True, allow_null=True
    )
    insurance_number = serializers.CharField(
        max_length=100, required=False, allow_blank=True, allow_null=True
    )
    emergency_contact_name = serializers.CharField(
        max_length=255, required=False, allow_blank=True, allow_null=True
    )
    emergency_contact_phone = serializers.CharField(
        max_length=30, required=False, allow_blank=True, allow_null=True,
        validators=[phone_validator],
    )

    def validate_date_of_birth(self, value):
        if value and value > timezone.localdate():
            raise serializers.ValidationError('Date of birth cannot be in the future')
        return value


class PatientRegistrationSerializer(PatientProfileFieldsMixin):
    """
    POST /api/patients/ input.

    Email uniqueness is enforced by ``PatientRegistrationService`` so a
    duplicate is reported as 409, not as a validation error.
    """
    first_name = NameField()
    last_name = NameField()
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=30, validators=[phone_validator])
    username = serializers.CharField(max_length=150, required=False)
    password = serializers.CharField(write_only=True, required=False, min_length=8)
    date_of_birth = serializers.DateField()
    gender = serializers.ChoiceField(choices=GenderChoices.choices)


class PatientUpdateSerializer(PatientProfileFieldsMixin):
    """PUT/PATCH /api/patients/{id}/ input; every field is optional."""
    first_name = NameField(required=False)
    last_name = NameField(required=False)
    email = serializers.EmailField(required=False)
    phone = serializers.CharField(max_length=30, required=False, validators=[phone_validator])
    date_of_birth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.ChoiceField(
        choices=GenderChoices.choices, required=False, allow_null=True
    )


# ============================================================================
# Appointments
# ============================================================================

class AppointmentListSerializer(serializers.ModelSerializer):
    """Lightweight appointment row for lists, schedules and today's view."""
    patient_name = serializers.CharField(source='patient.full_name', read_only=True)
    patient_number = serializers.CharField(source='patient.patient_number', read_only=True)
    doctor_name = serializers.CharField(source='doctor.user.full_name', read_only=True)
    appointment_time = serializers.TimeField(format='%H:%M', read_only=True)
    end_time = serializers.TimeField(format='%H:%M', read_only=True)

    class Meta:
        model = Appointment
        fields = [
            'id',
            'patient_id',
            'patient_name',
            'patient_number',
            'doctor_id',
            'doctor_name',
            'appointment_date',
            'appointment_time',
            'end_time',
            'duration_minutes',
            'status',
            'reason',
        ]
        read_only_fields = fields


class AppointmentDetailSerializer(AppointmentListSerializer):
    """Full appointment record with notes and allowed next statuses."""
    doctor_specialization = serializers.CharField(source='doctor.specialization', read_only=True)
    allowed_transitions = serializers.SerializerMethodField()

    class Meta(AppointmentListSerializer.Meta):
        fields = AppointmentListSerializer.Meta.fields + [
            'doctor_specialization',
            'notes',
            'allowed_transitions',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_allowed_transitions(self, obj):
        return Appointment.allowed_transitions(obj.status)


class AppointmentScheduleFieldsMixin(serializers.Serializer):
    duration_minutes = serializers.IntegerField(
        required=False,
        min_value=MIN_APPOINTMENT_MINUTES,
        max_value=MAX_APPOINTMENT_MINUTES,
    )
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class AppointmentCreateSerializer(AppointmentScheduleFieldsMixin):
    """
    POST /api/appointments/ input.

    Existence of patient and doctor and the conflict check are done by
    ``AppointmentService.create`` inside its transaction.
    """
    patient_id = serializers.UUIDField()
    doctor_id = serializers.UUIDField()
    appointment_date = serializers.DateField()
    appointment_time = serializers.TimeField(input_formats=TIME_INPUT_FORMATS)
    reason = serializers.CharField(min_length=3, max_length=500)

    def validate_appointment_date(self, value):
        if value < timezone.localdate():
            raise serializers.ValidationError('Appointment date cannot be in the past')
        return value


class AppointmentUpdateSerializer(AppointmentScheduleFieldsMixin):
    """PUT/PATCH /api/appointments/{id}/ input."""
    appointment_date = serializers.DateField(required=False)
    appointment_time = serializers.TimeField(required=False, input_formats=TIME_INPUT_FORMATS)
    status = serializers.ChoiceField(choices=AppointmentStatusChoices.choices, required=False)
    reason = serializers.CharField(
        required=False, allow_null=True, allow_blank=True, max_length=500
    )


class StatusTransitionSerializer(serializers.Serializer):
    """
    POST /api/appointments/{id}/status/ input.

    Whether the transition is allowed is decided by the service; an unknown
    status is a 400 here.
    """
    status = serializers.ChoiceField(choices=AppointmentStatusChoices.choices)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)
    notes = serializers.CharField(required=False, allow_blank=True)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


# ============================================================================
# Medical records and prescriptions
# ============================================================================

class ClinicalEntrySerializer(serializers.ModelSerializer):
    """Patient and prescriber columns shared by records and prescriptions."""
    patient_id = serializers.UUIDField(read_only=True)
    patient_name = serializers.CharField(source='patient.full_name', read_only=True)
    patient_number = serializers.CharField(source='patient.patient_number', read_only=True)
    doctor_id = serializers.UUIDField(read_only=True)
    doctor_name = serializers.CharField(source='doctor.user.full_name', read_only=True)

    ENTRY_FIELDS = [
        'id',
        'patient_id',
        'patient_name',
        'patient_number',
        'doctor_id',
        'doctor_name',
    ]


class MedicalRecordSerializer(ClinicalEntrySerializer):
    appointment_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = MedicalRecord
        fields = ClinicalEntrySerializer.ENTRY_FIELDS + [
            'appointment_id',
            'record_type',
            'visit_date',
            'diagnosis',
            'treatment',
            'notes',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class PrescriptionSerializer(ClinicalEntrySerializer):
    medical_record_id = serializers.UUIDField(read_only=True, allow_null=True)
    allowed_transitions = serializers.SerializerMethodField()

    class Meta:
        model = Prescription
        fields = ClinicalEntrySerializer.ENTRY_FIELDS + [
            'medical_record_id',
            'medication',
            'dosage',
            'instructions',
            'start_date',
            'end_date',
            'quantity',
            'status',
            'allowed_transitions',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_allowed_transitions(self, obj):
        return Prescription.allowed_transitions(obj.status)


class MedicalRecordUpdateSerializer(serializers.Serializer):
    """PUT/PATCH /api/medical-records/{id}/ input."""
    record_type = serializers.ChoiceField(choices=MedicalRecordTypeChoices.choices, required=False)
    visit_date = serializers.DateTimeField(required=False)
    diagnosis = serializers.CharField(required=False)
    treatment = serializers.CharField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_visit_date(self, value):
        if value > timezone.now():
            raise serializers.ValidationError('Visit date cannot be in the future')
        return value


class MedicalRecordCreateSerializer(MedicalRecordUpdateSerializer):
    """
    POST /api/medical-records/ input.

    ``doctor_id`` defaults to the requesting doctor; the service checks the
    patient, doctor and appointment.
    """
    patient_id = serializers.UUIDField()
    doctor_id = serializers.UUIDField(required=False)
    appointment_id = serializers.UUIDField(required=False, allow_null=True)
    diagnosis = serializers.CharField()
    treatment = serializers.CharField()


class PrescriptionUpdateSerializer(serializers.Serializer):
    """PUT/PATCH /api/prescriptions/{id}/ input; ``status`` follows the lifecycle."""
    medication = serializers.CharField(max_length=255, required=False)
    dosage = serializers.CharField(max_length=255, required=False)
    instructions = serializers.CharField(required=False)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False, allow_null=True)
    quantity = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    status = serializers.ChoiceField(choices=PrescriptionStatusChoices.choices, required=False)

    def validate(self, attrs):
        start_date, end_date = attrs.get('start_date'), attrs.get('end_date')
        if start_date and end_date and end_date < start_date:
            raise serializers.ValidationError({'end_date': 'End date cannot be before start date'})
        return attrs


class PrescriptionCreateSerializer(PrescriptionUpdateSerializer):
    """POST /api/prescriptions/ input. New prescriptions are always ``pending``."""
    patient_id = serializers.UUIDField()
    doctor_id = serializers.UUIDField(required=False)
    medical_record_id = serializers.UUIDField(required=False, allow_null=True)
    medication = serializers.CharField(max_length=255)
    dosage = serializers.CharField(max_length=255)
    instructions = serializers.CharField()
    start_date = serializers.DateField()
    status = None
