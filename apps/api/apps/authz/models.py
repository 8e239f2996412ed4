"""
Authz models: users, staff
"""
import uuid
from django.db import models
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin


# ============================================================================
# Enums
# ============================================================================

class RoleChoices(models.TextChoices):
    """Fixed role names. A user has exactly one role."""
    ADMIN = 'admin', 'Admin'
    DOCTOR = 'doctor', 'Doctor'
    NURSE = 'nurse', 'Nurse'
    RECEPTIONIST = 'receptionist', 'Receptionist'
    PHARMACIST = 'pharmacist', 'Pharmacist'
    PATIENT = 'patient', 'Patient'


STAFF_ROLES = frozenset({
    RoleChoices.ADMIN,
    RoleChoices.DOCTOR,
    RoleChoices.NURSE,
    RoleChoices.RECEPTIONIST,
    RoleChoices.PHARMACIST,
})


# ============================================================================
# User Management
# ============================================================================

class UserQuerySet(models.QuerySet):

    def active(self):
        return self.filter(is_active=True)

    def with_role(self, role):
        return self.filter(role=role)

    def find_by_email(self, email):
        return self.filter(email__iexact=email).first()

    def find_by_username(self, username):
        return self.filter(username__iexact=username).first()


class UserManager(BaseUserManager.from_queryset(UserQuerySet)):
    """Custom user manager for email-based authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')
        email = self.normalize_email(email)
        extra_fields.setdefault('username', email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('role', RoleChoices.ADMIN)
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Identity record for staff and patients.

    Users are never hard-deleted: ``deactivate()`` flips ``is_active``.
    Username and email stay unique across active and inactive users.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = models.CharField(max_length=150, unique=True)
    email = models.EmailField(unique=True, max_length=255)
    role = models.CharField(
        max_length=20,
        choices=RoleChoices.choices,
        default=RoleChoices.PATIENT,
    )
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=30, blank=True)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)  # Django admin access
    must_change_password = models.BooleanField(
        default=False,
        help_text='If true, user must change password on next login'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    class Meta:
        db_table = 'users'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        indexes = [
            models.Index(fields=['role'], name='idx_user_role'),
            models.Index(fields=['is_active'], name='idx_user_active'),
        ]

    def __str__(self):
        return self.email

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_staff_member(self):
        return self.role in STAFF_ROLES

    def deactivate(self, using=None):
        self.is_active = False
        self.save(using=using, update_fields=['is_active', 'updated_at'])


# ============================================================================
# Staff
# ============================================================================

class StaffQuerySet(models.QuerySet):

    def active(self):
        return self.filter(is_active=True, user__is_active=True)

    def doctors(self):
        """Active staff whose user is an active doctor."""
        return self.active().filter(user__role=RoleChoices.DOCTOR)


class Staff(models.Model):
    """
    Employment record for a staff user. Appointments reference doctors by
    their Staff id.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        User,
        on_delete=models.PROTECT,
        related_name='staff_profile'
    )
    employee_id = models.CharField(max_length=50, unique=True)
    specialization = models.CharField(max_length=100, blank=True)
    department = models.CharField(max_length=100, blank=True)
    license_number = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = StaffQuerySet.as_manager()

    class Meta:
        db_table = 'staff'
        verbose_name = 'Staff'
        verbose_name_plural = 'Staff'
        indexes = [
            models.Index(fields=['is_active'], name='idx_staff_active'),
            models.Index(fields=['department'], name='idx_staff_department'),
        ]

    def __str__(self):
        return f"{self.user.full_name or self.user.email} ({self.employee_id})"

    @property
    def is_doctor(self):
        return (
            self.is_active
            and self.user.is_active
            and self.user.role == RoleChoices.DOCTOR
        )
