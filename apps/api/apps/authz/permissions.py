"""
Authz permissions: role checks shared by every API.
"""
from rest_framework import permissions
from apps.authz.models import RoleChoices


def user_role(request):
    user = getattr(request, 'user', None)
    if not user or not user.is_authenticated:
        return None
    return getattr(user, 'role', None)


class RolePermission(permissions.BasePermission):
    """
    Base permission keyed on ``User.role``.

    Subclasses set ``read_roles`` (SAFE_METHODS), ``write_roles``
    (POST/PUT/PATCH) and ``delete_roles`` (DELETE, defaults to write_roles).
    """
    read_roles = frozenset()
    write_roles = frozenset()
    delete_roles = None

    def allowed_roles(self, request):
        if request.method in permissions.SAFE_METHODS:
            return self.read_roles
        if request.method == 'DELETE' and self.delete_roles is not None:
            return self.delete_roles
        return self.write_roles

    def has_permission(self, request, view):
        role = user_role(request)
        if role is None:
            return False
        return role in self.allowed_roles(request)

    def has_object_permission(self, request, view, obj):
        return self.has_permission(request, view)


class IsAdmin(RolePermission):
    """Only Admin role users. Used for user administration endpoints."""
    read_roles = write_roles = frozenset({RoleChoices.ADMIN})


class DoctorDirectoryPermission(RolePermission):
    """
    Doctor listings for booking forms.

    - Admin, Doctor, Nurse, Receptionist: read
    - Admin: write
    """
    read_roles = frozenset({
        RoleChoices.ADMIN,
        RoleChoices.DOCTOR,
        RoleChoices.NURSE,
        RoleChoices.RECEPTIONIST,
    })
    write_roles = frozenset({RoleChoices.ADMIN})
