"""
Authz views: user administration, doctor directory.
"""
from django.conf import settings
from django.db import models
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action

from apps.authz.models import Staff, User
from apps.authz.permissions import DoctorDirectoryPermission, IsAdmin
from apps.authz.serializers import (
    DoctorSerializer,
    PasswordChangeSerializer,
    UserCreateSerializer,
    UserSerializer,
    UserUpdateSerializer,
)
from apps.clinical.models import MAX_APPOINTMENT_MINUTES, MIN_APPOINTMENT_MINUTES
from apps.clinical.serializers import AppointmentListSerializer
from apps.clinical.services import ConflictChecker
from apps.core.exceptions import ValidationFailed
from apps.core.observability import get_sanitized_logger
from apps.core.responses import success_response
from apps.core.views import HMISViewSetMixin
from apps.core.validators import parse_date_param

logger = get_sanitized_logger(__name__)


class UserViewSet(HMISViewSetMixin, viewsets.ModelViewSet):
    """
    User administration (Admin only).

    Endpoints:
    - GET /api/users/ - List users (?search=, ?role=, ?is_active=)
    - GET /api/users/{id}/ - Get user detail
    - POST /api/users/ - Create user (temporary password returned once)
    - PUT/PATCH /api/users/{id}/ - Update user
    - DELETE /api/users/{id}/ - Deactivate user (never hard-deleted)
    - POST /api/users/change-password/ - Change own password (any authenticated user)
    """
    permission_classes = [IsAdmin]
    resource_name = 'User'

    def get_queryset(self):
        queryset = self.get_gateway().objects(User).select_related('staff_profile').all()

        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(
                models.Q(email__icontains=search) |
                models.Q(username__icontains=search) |
                models.Q(first_name__icontains=search) |
                models.Q(last_name__icontains=search)
            )

        is_active = self.request.query_params.get('is_active')
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active.lower() == 'true')

        role = self.request.query_params.get('role')
        if role:
            queryset = queryset.filter(role=role)

        return queryset.order_by('-created_at')

    def get_serializer_class(self):
        if self.action == 'create':
            return UserCreateSerializer
        elif self.action in ['update', 'partial_update']:
            return UserUpdateSerializer
        elif self.action == 'change_password':
            return PasswordChangeSerializer
        return UserSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with self.get_gateway().atomic():
            user = serializer.save()

        logger.info(
            'User created',
            extra={'event': 'user_created', 'target_user_id': str(user.id), 'role': user.role}
        )

        data = UserSerializer(user).data
        if user._temporary_password:
            data['temporary_password'] = user._temporary_password
        return success_response(data, 'User created successfully', status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        instance = self.get_object()
        serializer = self.get_serializer(instance, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        with self.get_gateway().atomic():
            user = serializer.save()

        logger.info(
            'User updated',
            extra={
                'event': 'user_updated',
                'target_user_id': str(user.id),
                'changed_fields': sorted(serializer.validated_data.keys()),
            }
        )
        return success_response(UserSerializer(user).data, 'User updated successfully')

    def destroy(self, request, *args, **kwargs):
        user = self.get_object()
        if user.pk == request.user.pk:
            raise ValidationFailed('You cannot deactivate your own account')
        user.deactivate()

        logger.info('User deactivated', extra={'event': 'user_deactivated', 'target_user_id': str(user.id)})
        return success_response(message='User deactivated successfully')

    @action(
        detail=False,
        methods=['post'],
        url_path='change-password',
        permission_classes=[permissions.IsAuthenticated],
    )
    def change_password(self, request):
        serializer = PasswordChangeSerializer(data=request.data, context={'user': request.user})
        serializer.is_valid(raise_exception=True)
        serializer.save()

        logger.info('Password changed', extra={'event': 'password_changed'})
        return success_response({'must_change_password': False}, 'Password changed successfully')


class DoctorViewSet(HMISViewSetMixin, viewsets.ReadOnlyModelViewSet):
    """
    Active doctors.

    Endpoints:
    - GET /api/doctors/ - List doctors (?search=, ?specialization=, ?department=)
    - GET /api/doctors/{id}/ - Doctor detail
    - GET /api/doctors/{id}/schedule/?date=YYYY-MM-DD - Booked appointments on a date
    - GET /api/doctors/{id}/available-slots/?date=&duration= - Free slots on a date
    """
    permission_classes = [DoctorDirectoryPermission]
    serializer_class = DoctorSerializer
    resource_name = 'Doctor'

    def get_queryset(self):
        queryset = self.get_gateway().objects(Staff).doctors().select_related('user')

        specialization = self.request.query_params.get('specialization')
        if specialization:
            queryset = queryset.filter(specialization__iexact=specialization)

        department = self.request.query_params.get('department')
        if department:
            queryset = queryset.filter(department__iexact=department)

        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(
                models.Q(user__first_name__icontains=search) |
                models.Q(user__last_name__icontains=search) |
                models.Q(specialization__icontains=search)
            )

        return queryset.order_by('user__last_name', 'user__first_name')

    @action(detail=True, methods=['get'])
    def schedule(self, request, pk=None):
        doctor = self.get_object()
        day = parse_date_param(request, 'date')

        checker = ConflictChecker(self.get_gateway())
        appointments = checker.booked_appointments(doctor.id, day)

        return success_response({
            'doctor_id': str(doctor.id),
            'date': day.isoformat(),
            'appointments': AppointmentListSerializer(appointments, many=True).data,
        })

    @action(detail=True, methods=['get'], url_path='available-slots')
    def available_slots(self, request, pk=None):
        """
        GET /api/doctors/{id}/available-slots/?date=YYYY-MM-DD&duration=30

        Free slots within working hours that would pass the conflict check.
        """
        doctor = self.get_object()
        day = parse_date_param(request, 'date')
        duration = request.query_params.get('duration') or settings.HMIS_DEFAULT_APPOINTMENT_DURATION
        try:
            duration = int(duration)
        except (TypeError, ValueError):
            duration = 0
        if not MIN_APPOINTMENT_MINUTES <= duration <= MAX_APPOINTMENT_MINUTES:
            raise ValidationFailed(errors=[{
                'field': 'duration',
                'message': (
                    f'Duration must be between {MIN_APPOINTMENT_MINUTES} and '
                    f'{MAX_APPOINTMENT_MINUTES} minutes'
                ),
            }])

        checker = ConflictChecker(self.get_gateway())
        return success_response({
            'doctor_id': str(doctor.id),
            'date': day.isoformat(),
            'duration_minutes': duration,
            'slots': checker.free_slots(doctor.id, day, duration),
        })
