"""
Clinical API views: patients, appointments, medical records and prescriptions.

Views validate input with serializers and delegate every write to the
services in ``apps.clinical.services``; each request builds its services
on the request's gateway.
"""
from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied

from apps.authz.models import RoleChoices
from apps.authz.permissions import user_role

from apps.clinical.models import (
    Appointment,
    AppointmentStatusChoices,
    BloodTypeChoices,
    GenderChoices,
    MedicalRecordTypeChoices,
    Patient,
    PrescriptionStatusChoices,
)
from apps.clinical.permissions import (
    AppointmentPermission,
    MedicalRecordPermission,
    PatientPermission,
    PrescriptionPermission,
)
from apps.clinical.serializers import (
    AppointmentCreateSerializer,
    AppointmentDetailSerializer,
    AppointmentListSerializer,
    AppointmentUpdateSerializer,
    CancelSerializer,
    MedicalRecordCreateSerializer,
    MedicalRecordSerializer,
    MedicalRecordUpdateSerializer,
    PatientDetailSerializer,
    PatientListSerializer,
    PatientRegistrationSerializer,
    PatientUpdateSerializer,
    PrescriptionCreateSerializer,
    PrescriptionSerializer,
    PrescriptionUpdateSerializer,
    StatusTransitionSerializer,
)
from apps.clinical.services import (
    AppointmentService,
    ClinicalRecordService,
    PatientRegistrationService,
)
from apps.core.responses import success_response
from apps.core.validators import parse_choice_param, parse_date_param, parse_uuid_param
from apps.core.views import HMISViewSetMixin


# ============================================================================
# Patients
# ============================================================================

class PatientViewSet(HMISViewSetMixin, viewsets.ModelViewSet):
    """
    ViewSet for Patient endpoints.

    Endpoints:
    - GET /api/patients/ - List (?search=, ?gender=, ?blood_type=, ?is_active=, ?page=, ?limit=)
    - POST /api/patients/ - Register (creates User + Patient)
    - GET /api/patients/{id}/ - Detail
    - PUT/PATCH /api/patients/{id}/ - Update patient and user fields
    - DELETE /api/patients/{id}/ - Deactivate (Admin only)
    - GET /api/patients/{id}/appointments/ - Patient's appointments
    - GET /api/patients/{id}/medical-records/ - Patient's medical records
    - GET /api/patients/{id}/prescriptions/ - Patient's prescriptions
    """
    permission_classes = [PatientPermission]
    resource_name = 'Patient'

    def get_queryset(self):
        queryset = self.get_gateway().objects(Patient).select_related('user')
        if self.action != 'list':
            return queryset

        # Active patients unless ?is_active= says otherwise
        is_active = self.request.query_params.get('is_active', 'true').lower()
        if is_active != 'all':
            queryset = queryset.filter(user__is_active=is_active == 'true')

        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.search(search.strip())

        gender = parse_choice_param(self.request, 'gender', GenderChoices.values)
        if gender:
            queryset = queryset.filter(gender=gender)

        blood_type = parse_choice_param(self.request, 'blood_type', BloodTypeChoices.values)
        if blood_type:
            queryset = queryset.filter(blood_type=blood_type)

        return queryset.order_by('-created_at')

    def get_serializer_class(self):
        if self.action == 'list':
            return PatientListSerializer
        elif self.action == 'create':
            return PatientRegistrationSerializer
        elif self.action in ['update', 'partial_update']:
            return PatientUpdateSerializer
        return PatientDetailSerializer

    def get_service(self):
        return PatientRegistrationService(self.get_gateway())

    def _detail(self, patient):
        return PatientDetailSerializer(patient, context=self.get_serializer_context()).data

    def list(self, request, *args, **kwargs):
        return self.paginated_list(self.get_queryset())

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        patient = self.get_service().register_patient(serializer.validated_data)
        return success_response(
            self._detail(patient),
            'Patient created successfully',
            status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        patient = self.get_object()
        serializer = self.get_serializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)

        patient = self.get_service().update_patient(patient.pk, serializer.validated_data)
        return success_response(self._detail(patient), 'Patient updated successfully')

    def destroy(self, request, *args, **kwargs):
        patient = self.get_object()
        self.get_service().deactivate_patient(patient.pk)
        return success_response(message='Patient deactivated successfully')

    @action(detail=True, methods=['get'], permission_classes=[AppointmentPermission])
    def appointments(self, request, pk=None):
        patient = self.get_object()
        queryset = self.get_service().appointments_for(patient.pk)
        return self.paginated_list(queryset, AppointmentListSerializer)

    @action(
        detail=True,
        methods=['get'],
        url_path='medical-records',
        permission_classes=[MedicalRecordPermission],
    )
    def medical_records(self, request, pk=None):
        patient = self.get_object()
        queryset = ClinicalRecordService(self.get_gateway()).records_for(patient.pk)
        return self.paginated_list(queryset, MedicalRecordSerializer)

    @action(detail=True, methods=['get'], permission_classes=[PrescriptionPermission])
    def prescriptions(self, request, pk=None):
        patient = self.get_object()
        queryset = ClinicalRecordService(self.get_gateway()).prescriptions_for(patient.pk)
        return self.paginated_list(queryset, PrescriptionSerializer)


# ============================================================================
# Appointments
# ============================================================================

class AppointmentViewSet(HMISViewSetMixin, viewsets.ModelViewSet):
    """
    ViewSet for Appointment endpoints.

    Endpoints:
    - GET /api/appointments/ - List (?status=, ?date=, ?date_from=, ?date_to=,
      ?doctor_id=, ?patient_id=, ?page=, ?limit=)
    - POST /api/appointments/ - Book (409 on doctor conflict)
    - GET /api/appointments/today/ - Today's appointments (?doctor_id=)
    - GET /api/appointments/{id}/ - Detail
    - PUT/PATCH /api/appointments/{id}/ - Update / reschedule
    - DELETE /api/appointments/{id}/ - Cancel (soft, optional reason)
    - POST /api/appointments/{id}/status/ - Status transition
    """
    permission_classes = [AppointmentPermission]
    resource_name = 'Appointment'

    def get_queryset(self):
        queryset = self.get_gateway().objects(Appointment).select_related(
            'patient__user',
            'doctor__user',
        )
        if self.action != 'list':
            return queryset

        params = self.request.query_params

        status_filter = parse_choice_param(self.request, 'status', AppointmentStatusChoices.values)
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        if params.get('date'):
            queryset = queryset.filter(appointment_date=parse_date_param(self.request, 'date'))
        if params.get('date_from'):
            queryset = queryset.filter(appointment_date__gte=parse_date_param(self.request, 'date_from'))
        if params.get('date_to'):
            queryset = queryset.filter(appointment_date__lte=parse_date_param(self.request, 'date_to'))

        doctor_id = parse_uuid_param(self.request, 'doctor_id')
        if doctor_id:
            queryset = queryset.filter(doctor_id=doctor_id)

        patient_id = parse_uuid_param(self.request, 'patient_id')
        if patient_id:
            queryset = queryset.filter(patient_id=patient_id)

        search = params.get('search')
        if search:
            queryset = queryset.filter(
                Q(patient__user__first_name__icontains=search) |
                Q(patient__user__last_name__icontains=search) |
                Q(patient__patient_number__icontains=search)
            )

        return queryset.order_by('-appointment_date', '-appointment_time')

    def get_serializer_class(self):
        if self.action in ['list', 'today']:
            return AppointmentListSerializer
        elif self.action == 'create':
            return AppointmentCreateSerializer
        elif self.action in ['update', 'partial_update']:
            return AppointmentUpdateSerializer
        elif self.action == 'set_status':
            return StatusTransitionSerializer
        return AppointmentDetailSerializer

    def get_service(self):
        return AppointmentService(self.get_gateway())

    def _detail(self, appointment_id):
        appointment = self.get_service().get(appointment_id)
        return AppointmentDetailSerializer(appointment, context=self.get_serializer_context()).data

    def list(self, request, *args, **kwargs):
        return self.paginated_list(self.get_queryset())

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        appointment = self.get_service().create(**serializer.validated_data)
        return success_response(
            self._detail(appointment.pk),
            'Appointment created successfully',
            status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        appointment = self.get_object()
        serializer = self.get_serializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)

        self.get_service().update(appointment.pk, serializer.validated_data)
        return success_response(self._detail(appointment.pk), 'Appointment updated successfully')

    def destroy(self, request, *args, **kwargs):
        """DELETE cancels; the row is kept."""
        appointment = self.get_object()
        payload = request.data if request.data else request.query_params
        serializer = CancelSerializer(data={'reason': payload.get('reason') or ''})
        serializer.is_valid(raise_exception=True)

        self.get_service().cancel(appointment.pk, serializer.validated_data.get('reason') or None)
        return success_response(self._detail(appointment.pk), 'Appointment cancelled successfully')

    @action(detail=True, methods=['post'], url_path='status')
    def set_status(self, request, pk=None):
        """
        POST /api/appointments/{id}/status/

        Request body:
        {
            "status": "confirmed",
            "reason": "Patient called to cancel",   # optional, kept on cancel
            "notes": "Follow-up in two weeks"      # optional, kept on complete
        }

        Returns:
            200: Transition applied (or status unchanged)
            400: Unknown status
            409: Transition not allowed from the current status
        """
        appointment = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        service = self.get_service()
        if data['status'] == AppointmentStatusChoices.COMPLETED:
            service.complete(appointment.pk, data.get('notes') or None)
        else:
            service.update_status(appointment.pk, data['status'], data.get('reason') or None)
        return success_response(self._detail(appointment.pk), 'Appointment status updated successfully')

    @action(detail=False, methods=['get'])
    def today(self, request):
        queryset = self.get_queryset().today()
        doctor_id = parse_uuid_param(request, 'doctor_id')
        if doctor_id:
            queryset = queryset.filter(doctor_id=doctor_id)
        queryset = queryset.order_by('appointment_time')

        serializer = self.get_serializer(queryset, many=True)
        return success_response(serializer.data, count=len(serializer.data))


# ============================================================================
# Medical records and prescriptions
# ============================================================================

class ClinicalEntryViewSet(HMISViewSetMixin, viewsets.ModelViewSet):
    """
    Shared list/create/update flow for doctor-authored entries.

    Entries are never deleted, so DELETE is not routed.
    """
    http_method_names = ['get', 'post', 'put', 'patch', 'head', 'options']
    read_serializer_class = None
    create_serializer_class = None
    update_serializer_class = None

    def get_service(self):
        return ClinicalRecordService(self.get_gateway())

    def get_serializer_class(self):
        if self.action == 'create':
            return self.create_serializer_class
        elif self.action in ['update', 'partial_update']:
            return self.update_serializer_class
        return self.read_serializer_class

    def filter_entries(self, queryset):
        patient_id = parse_uuid_param(self.request, 'patient_id')
        if patient_id:
            queryset = queryset.filter(patient_id=patient_id)

        doctor_id = parse_uuid_param(self.request, 'doctor_id')
        if doctor_id:
            queryset = queryset.filter(doctor_id=doctor_id)
        return queryset

    def _detail(self, entry):
        return self.read_serializer_class(entry, context=self.get_serializer_context()).data

    def list(self, request, *args, **kwargs):
        return self.paginated_list(self.get_queryset())


class MedicalRecordViewSet(ClinicalEntryViewSet):
    """
    ViewSet for MedicalRecord endpoints.

    Endpoints:
    - GET /api/medical-records/ - List (?patient_id=, ?doctor_id=, ?record_type=,
      ?date_from=, ?date_to=, ?page=, ?limit=)
    - POST /api/medical-records/ - Create (author defaults to the requesting doctor)
    - GET /api/medical-records/{id}/ - Detail
    - PUT/PATCH /api/medical-records/{id}/ - Amend
    """
    permission_classes = [MedicalRecordPermission]
    resource_name = 'Medical record'
    read_serializer_class = MedicalRecordSerializer
    create_serializer_class = MedicalRecordCreateSerializer
    update_serializer_class = MedicalRecordUpdateSerializer

    def get_queryset(self):
        queryset = self.get_service().records()
        if self.action != 'list':
            return queryset

        queryset = self.filter_entries(queryset)

        record_type = parse_choice_param(self.request, 'record_type', MedicalRecordTypeChoices.values)
        if record_type:
            queryset = queryset.filter(record_type=record_type)

        params = self.request.query_params
        if params.get('date_from'):
            queryset = queryset.filter(visit_date__date__gte=parse_date_param(self.request, 'date_from'))
        if params.get('date_to'):
            queryset = queryset.filter(visit_date__date__lte=parse_date_param(self.request, 'date_to'))

        return queryset.order_by('-visit_date', '-created_at')

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        record = self.get_service().create_record(request.user, **serializer.validated_data)
        return success_response(
            self._detail(self.get_service().get_record(record.pk)),
            'Medical record created successfully',
            status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        record = self.get_object()
        serializer = self.get_serializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)

        record = self.get_service().update_record(record.pk, serializer.validated_data)
        return success_response(self._detail(record), 'Medical record updated successfully')


class PrescriptionViewSet(ClinicalEntryViewSet):
    """
    ViewSet for Prescription endpoints.

    Endpoints:
    - GET /api/prescriptions/ - List (?patient_id=, ?doctor_id=, ?status=, ?page=, ?limit=)
    - POST /api/prescriptions/ - Create in status pending
    - GET /api/prescriptions/{id}/ - Detail
    - PUT/PATCH /api/prescriptions/{id}/ - Amend or change status (409 on invalid transition)
    """
    permission_classes = [PrescriptionPermission]
    resource_name = 'Prescription'
    read_serializer_class = PrescriptionSerializer
    create_serializer_class = PrescriptionCreateSerializer
    update_serializer_class = PrescriptionUpdateSerializer

    def get_queryset(self):
        queryset = self.get_service().prescriptions()
        if self.action != 'list':
            return queryset

        queryset = self.filter_entries(queryset)

        status_filter = parse_choice_param(self.request, 'status', PrescriptionStatusChoices.values)
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        return queryset.order_by('-created_at')

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        prescription = self.get_service().create_prescription(request.user, **serializer.validated_data)
        return success_response(
            self._detail(self.get_service().get_prescription(prescription.pk)),
            'Prescription created successfully',
            status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        prescription = self.get_object()
        serializer = self.get_serializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        if user_role(request) == RoleChoices.PHARMACIST and set(serializer.validated_data) - {'status'}:
            raise PermissionDenied('Pharmacists can only change the prescription status')

        prescription = self.get_service().update_prescription(prescription.pk, serializer.validated_data)
        return success_response(self._detail(prescription), 'Prescription updated successfully')
