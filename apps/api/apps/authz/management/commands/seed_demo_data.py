"""
Management command to seed demo users, a doctor profile and a patient.

Usage:
    python manage.py seed_demo_data

This command is idempotent and safe to run multiple times.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.authz.models import RoleChoices, Staff, User
from apps.clinical.models import Patient
from apps.clinical.services import PatientRegistrationService


DEMO_STAFF = [
    {
        'username': 'admin',
        'email': 'admin@hospital.local',
        'password': 'admin123dev',
        'first_name': 'System',
        'last_name': 'Administrator',
        'role': RoleChoices.ADMIN,
        'phone': '+1234567890',
    },
    {
        'username': 'doctor',
        'email': 'dr.smith@hospital.local',
        'password': 'doctor123dev',
        'first_name': 'John',
        'last_name': 'Smith',
        'role': RoleChoices.DOCTOR,
        'phone': '+1234567891',
        'staff': {
            'employee_id': 'EMP001',
            'specialization': 'Cardiology',
            'department': 'Cardiology',
            'license_number': 'MD-0001',
        },
    },
    {
        'username': 'nurse',
        'email': 'nurse.jones@hospital.local',
        'password': 'nurse123dev',
        'first_name': 'Sarah',
        'last_name': 'Jones',
        'role': RoleChoices.NURSE,
        'phone': '+1234567892',
    },
    {
        'username': 'receptionist',
        'email': 'reception.mike@hospital.local',
        'password': 'reception123dev',
        'first_name': 'Mike',
        'last_name': 'Johnson',
        'role': RoleChoices.RECEPTIONIST,
        'phone': '+1234567893',
    },
    {
        'username': 'pharmacist',
        'email': 'pharm.wilson@hospital.local',
        'password': 'pharmacist123dev',
        'first_name': 'Emily',
        'last_name': 'Wilson',
        'role': RoleChoices.PHARMACIST,
        'phone': '+1234567894',
    },
]

DEMO_PATIENT = {
    'email': 'patient@hospital.local',
    'password': 'patient123dev',
    'first_name': 'Jane',
    'last_name': 'Doe',
    'phone': '+1234567895',
    'gender': 'female',
    'blood_type': 'O+',
    'allergies': 'Penicillin',
}


class Command(BaseCommand):
    help = 'Ensure demo staff users and a demo patient exist'

    def handle(self, *args, **options):
        self.stdout.write('Ensuring demo staff users exist...')
        for data in DEMO_STAFF:
            self._ensure_staff_user(dict(data))

        self.stdout.write('\nEnsuring demo patient exists...')
        if User.objects.find_by_email(DEMO_PATIENT['email']):
            self.stdout.write(f"  - Patient exists: {DEMO_PATIENT['email']}")
        else:
            patient = PatientRegistrationService().register_patient(dict(DEMO_PATIENT))
            self.stdout.write(self.style.SUCCESS(f'  ✓ Registered patient {patient.patient_number}'))

        self.stdout.write(f'\nPatients on file: {Patient.objects.count()}')
        self.stdout.write(self.style.SUCCESS('\n✓ Done'))

    @transaction.atomic
    def _ensure_staff_user(self, data):
        staff_data = data.pop('staff', None)
        password = data.pop('password')

        user = User.objects.find_by_email(data['email'])
        if user is None:
            user = User.objects.create_user(
                password=password,
                is_staff=data['role'] == RoleChoices.ADMIN,
                is_superuser=data['role'] == RoleChoices.ADMIN,
                **data
            )
            self.stdout.write(self.style.SUCCESS(f"  ✓ Created {user.role}: {user.email}"))
        else:
            # Keep the role current so logins match the demo matrix
            user.role = data['role']
            user.save(update_fields=['role', 'updated_at'])
            self.stdout.write(f"  - User exists: {user.email} ({user.role})")

        if staff_data:
            _, created = Staff.objects.get_or_create(user=user, defaults=staff_data)
            if created:
                self.stdout.write(self.style.SUCCESS(f"    ✓ Created staff record {staff_data['employee_id']}"))
