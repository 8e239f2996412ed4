from django.contrib import admin
from .models import IdentifierSequence


@admin.register(IdentifierSequence)
class IdentifierSequenceAdmin(admin.ModelAdmin):
    list_display = ['name', 'last_value', 'updated_at']
    readonly_fields = ['updated_at']
