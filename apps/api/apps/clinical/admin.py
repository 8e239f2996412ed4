from django.contrib import admin
from .models import Appointment, MedicalRecord, Patient, Prescription


class AppointmentInline(admin.TabularInline):
    model = Appointment
    fk_name = 'patient'
    extra = 0
    can_delete = False
    fields = ['appointment_date', 'appointment_time', 'duration_minutes', 'doctor', 'status']
    readonly_fields = fields
    show_change_link = True


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['patient_number', 'full_name', 'gender', 'blood_type', 'active', 'created_at']
    list_filter = ['gender', 'blood_type', 'user__is_active']
    search_fields = ['patient_number', 'user__first_name', 'user__last_name', 'user__email', 'user__phone']
    readonly_fields = ['id', 'patient_number', 'created_at', 'updated_at']
    list_select_related = ['user']
    inlines = [AppointmentInline]

    fieldsets = (
        ('Identity', {
            'fields': ('id', 'patient_number', 'user')
        }),
        ('Demographics', {
            'fields': ('date_of_birth', 'gender', 'blood_type', 'address')
        }),
        ('Medical', {
            'fields': ('allergies', 'medical_history', 'insurance_provider', 'insurance_number')
        }),
        ('Emergency Contact', {
            'fields': ('emergency_contact_name', 'emergency_contact_phone')
        }),
        ('Audit', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def has_delete_permission(self, request, obj=None):
        # Patients are deactivated through their user, never deleted
        return False

    @admin.display(boolean=True, ordering='user__is_active')
    def active(self, obj):
        return obj.user.is_active


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['appointment_date', 'appointment_time', 'duration_minutes', 'patient', 'doctor', 'status']
    list_filter = ['status', 'appointment_date']
    search_fields = ['patient__patient_number', 'patient__user__last_name', 'doctor__user__last_name']
    readonly_fields = ['id', 'created_at', 'updated_at']
    list_select_related = ['patient__user', 'doctor__user']
    date_hierarchy = 'appointment_date'

    def has_delete_permission(self, request, obj=None):
        # Cancellation is a status change
        return False


@admin.register(MedicalRecord)
class MedicalRecordAdmin(admin.ModelAdmin):
    list_display = ['visit_date', 'record_type', 'patient', 'doctor']
    list_filter = ['record_type', 'visit_date']
    search_fields = ['patient__patient_number', 'patient__user__last_name', 'diagnosis']
    readonly_fields = ['id', 'created_at', 'updated_at']
    raw_id_fields = ['patient', 'doctor', 'appointment']
    list_select_related = ['patient__user', 'doctor__user']

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Prescription)
class PrescriptionAdmin(admin.ModelAdmin):
    list_display = ['medication', 'dosage', 'patient', 'doctor', 'start_date', 'end_date', 'status']
    list_filter = ['status', 'start_date']
    search_fields = ['medication', 'patient__patient_number', 'patient__user__last_name']
    readonly_fields = ['id', 'created_at', 'updated_at']
    raw_id_fields = ['patient', 'doctor', 'medical_record']
    list_select_related = ['patient__user', 'doctor__user']

    def has_delete_permission(self, request, obj=None):
        return False
