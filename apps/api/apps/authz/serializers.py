"""
Authz serializers: users, staff, doctors.
"""
import random
import secrets
import string

from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from apps.authz.models import RoleChoices, Staff, STAFF_ROLES, User
from apps.core.gateway import get_gateway


class GatewayBoundMixin:
    """Lookups and writes go through the viewset's gateway (``context['gateway']``)."""

    def objects(self, model):
        gateway = self.context.get('gateway') or get_gateway()
        return gateway.objects(model)


class StaffSerializer(serializers.ModelSerializer):
    class Meta:
        model = Staff
        fields = [
            'id',
            'employee_id',
            'specialization',
            'department',
            'license_number',
            'is_active',
        ]
        read_only_fields = ['id']
        # Uniqueness is checked by the user serializers, which know the owner
        extra_kwargs = {'employee_id': {'validators': []}}


class UserSerializer(serializers.ModelSerializer):
    """
    Read serializer for users.

    Used for:
    - GET /api/users/, /api/users/{id}/
    - GET /api/auth/me/
    """
    full_name = serializers.SerializerMethodField()
    staff = StaffSerializer(source='staff_profile', read_only=True)

    class Meta:
        model = User
        fields = [
            'id',
            'username',
            'email',
            'role',
            'first_name',
            'last_name',
            'full_name',
            'phone',
            'is_active',
            'must_change_password',
            'staff',
            'last_login',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_full_name(self, obj):
        return obj.full_name or obj.email


class UserCreateSerializer(GatewayBoundMixin, serializers.ModelSerializer):
    """
    Serializer for user creation (Admin only).

    Generates a temporary password when none is given and sets
    must_change_password=True. Staff roles may carry ``staff`` data to
    create the Staff record in the same request.
    """
    password = serializers.CharField(write_only=True, required=False)
    staff = StaffSerializer(required=False, write_only=True)

    class Meta:
        model = User
        fields = [
            'id',
            'username',
            'email',
            'role',
            'first_name',
            'last_name',
            'phone',
            'is_active',
            'password',
            'staff',
        ]
        read_only_fields = ['id']
        extra_kwargs = {
            'username': {'required': False, 'validators': []},
            'email': {'validators': []},
            'role': {'required': True},
        }

    def validate_email(self, value):
        if self.objects(User).filter(email__iexact=value).exists():
            raise serializers.ValidationError('A user with this email already exists.')
        return value.lower()

    def validate_username(self, value):
        if self.objects(User).filter(username__iexact=value).exists():
            raise serializers.ValidationError('A user with this username already exists.')
        return value

    def validate_password(self, value):
        validate_password(value)
        return value

    def validate(self, attrs):
        staff = attrs.get('staff')
        if staff and attrs.get('role') not in STAFF_ROLES:
            raise serializers.ValidationError({'staff': 'Only staff roles can have a staff record.'})
        if staff and self.objects(Staff).filter(employee_id=staff.get('employee_id')).exists():
            raise serializers.ValidationError({'staff': 'Employee id already in use.'})
        return attrs

    def create(self, validated_data):
        staff_data = validated_data.pop('staff', None)
        password = validated_data.pop('password', None)

        temporary = not password
        if temporary:
            password = generate_temporary_password()

        user = self.objects(User).create_user(
            password=password,
            must_change_password=temporary,
            is_staff=validated_data.get('role') == RoleChoices.ADMIN,
            **validated_data
        )

        if staff_data:
            self.objects(Staff).create(user=user, **staff_data)

        # Shown once in the create response
        user._temporary_password = password if temporary else None
        return user


class UserUpdateSerializer(GatewayBoundMixin, serializers.ModelSerializer):
    """PATCH/PUT /api/users/{id}/ (Admin only)."""
    staff = StaffSerializer(required=False, write_only=True)

    class Meta:
        model = User
        fields = [
            'username',
            'email',
            'role',
            'first_name',
            'last_name',
            'phone',
            'is_active',
            'staff',
        ]
        extra_kwargs = {
            'username': {'validators': []},
            'email': {'validators': []},
        }

    def validate_email(self, value):
        qs = self.objects(User).filter(email__iexact=value).exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError('A user with this email already exists.')
        return value.lower()

    def validate_username(self, value):
        qs = self.objects(User).filter(username__iexact=value).exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError('A user with this username already exists.')
        return value

    def validate(self, attrs):
        staff = attrs.get('staff')
        if staff and staff.get('employee_id'):
            taken = self.objects(Staff).filter(employee_id=staff['employee_id']).exclude(user=self.instance)
            if taken.exists():
                raise serializers.ValidationError({'staff': 'Employee id already in use.'})
        return attrs

    def update(self, instance, validated_data):
        staff_data = validated_data.pop('staff', None)
        instance = super().update(instance, validated_data)

        if staff_data:
            self.objects(Staff).update_or_create(user=instance, defaults=staff_data)
        return instance


class PasswordChangeSerializer(serializers.Serializer):
    """
    Self-service password change.

    Clears must_change_password, which patients created with the default
    password start with.
    """
    old_password = serializers.CharField(write_only=True)
    new_password = serializers.CharField(write_only=True)

    def validate_old_password(self, value):
        user = self.context['user']
        if not user.check_password(value):
            raise serializers.ValidationError('Current password is incorrect.')
        return value

    def validate_new_password(self, value):
        validate_password(value, user=self.context['user'])
        return value

    def save(self, **kwargs):
        user = self.context['user']
        user.set_password(self.validated_data['new_password'])
        user.must_change_password = False
        user.save(update_fields=['password', 'must_change_password', 'updated_at'])
        return user


class DoctorSerializer(serializers.ModelSerializer):
    """Active doctors, as shown in booking forms."""
    user_id = serializers.UUIDField(source='user.id', read_only=True)
    first_name = serializers.CharField(source='user.first_name', read_only=True)
    last_name = serializers.CharField(source='user.last_name', read_only=True)
    email = serializers.EmailField(source='user.email', read_only=True)
    phone = serializers.CharField(source='user.phone', read_only=True)

    class Meta:
        model = Staff
        fields = [
            'id',
            'user_id',
            'employee_id',
            'first_name',
            'last_name',
            'email',
            'phone',
            'specialization',
            'department',
            'license_number',
        ]
        read_only_fields = fields


def generate_temporary_password(length=12):
    """Random password with upper, lower, digit and symbol characters."""
    chars = string.ascii_letters + string.digits + '!@#$%^&*'
    password = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice('!@#$%^&*'),
    ]
    password += [secrets.choice(chars) for _ in range(length - 4)]
    random.SystemRandom().shuffle(password)
    return ''.join(password)
