from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import Staff, User


class StaffInline(admin.StackedInline):
    model = Staff
    can_delete = False
    fk_name = 'user'


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['email', 'username', 'role', 'first_name', 'last_name', 'is_active', 'must_change_password', 'created_at']
    list_filter = ['role', 'is_active', 'is_staff', 'must_change_password']
    search_fields = ['email', 'username', 'first_name', 'last_name']
    readonly_fields = ['id', 'created_at', 'updated_at', 'last_login']
    inlines = [StaffInline]

    fieldsets = (
        (None, {'fields': ('id', 'email', 'username', 'password')}),
        ('Personal Info', {'fields': ('first_name', 'last_name', 'phone')}),
        ('Access', {'fields': ('role', 'is_active', 'is_staff', 'is_superuser', 'must_change_password')}),
        ('Important dates', {'fields': ('last_login', 'created_at', 'updated_at')}),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'username', 'role', 'password1', 'password2', 'first_name', 'last_name'),
        }),
    )

    ordering = ['email']

    def has_delete_permission(self, request, obj=None):
        # Users are deactivated, never deleted
        return False


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    list_display = ['employee_id', 'user', 'specialization', 'department', 'is_active']
    list_filter = ['is_active', 'department']
    search_fields = ['employee_id', 'user__email', 'user__last_name', 'specialization']
    readonly_fields = ['id', 'created_at', 'updated_at']
    autocomplete_fields = ['user']
