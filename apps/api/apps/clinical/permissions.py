"""
Clinical permissions for API endpoints.

BUSINESS RULE: patient-role users have no access to staff endpoints.
"""
from apps.authz.models import RoleChoices
from apps.authz.permissions import RolePermission


class PatientPermission(RolePermission):
    """
    Permission for Patient endpoints based on role.

    - Admin: Full access (read, register, update, deactivate)
    - Doctor, Nurse, Receptionist: Read, register, update (no deactivate)
    - Pharmacist: Read only, without medical fields
    - Patient: No access
    """
    read_roles = frozenset({
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
        RoleChoices.RECEPTIONIST,
        RoleChoices.PHARMACIST,
    })
    write_roles = frozenset({
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
        RoleChoices.RECEPTIONIST,
    })
    delete_roles = frozenset({RoleChoices.ADMIN})


class AppointmentPermission(RolePermission):
    """
    Permission for Appointment endpoints.

    - Admin, Doctor, Nurse, Receptionist: Full access (DELETE cancels)
    - Pharmacist, Patient: No access
    """
    read_roles = write_roles = frozenset({
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
        RoleChoices.RECEPTIONIST,
    })


class MedicalRecordPermission(RolePermission):
    """
    Medical records hold clinical notes.

    - Admin, Doctor: Read and write
    - Nurse: Read only
    - Receptionist, Pharmacist, Patient: No access
    """
    read_roles = frozenset({
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
    })
    write_roles = frozenset({RoleChoices.ADMIN, RoleChoices.DOCTOR})


class PrescriptionPermission(RolePermission):
    """
    - Admin, Doctor: Read, write, change status
    - Pharmacist: Read and update (dispensing moves the status along)
    - Nurse: Read only
    - Receptionist, Patient: No access
    """
    read_roles = frozenset({
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
        RoleChoices.PHARMACIST,
    })
    write_roles = frozenset({RoleChoices.ADMIN, RoleChoices.DOCTOR})
    update_roles = frozenset({RoleChoices.ADMIN, RoleChoices.DOCTOR, RoleChoices.PHARMACIST})

    def allowed_roles(self, request):
        if request.method in ('PUT', 'PATCH'):
            return self.update_roles
        return super().allowed_roles(request)
