from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from apps.tokenapp.models import OfficialAssignment, Token


@admin.register(Token)
class TokenAdmin(admin.ModelAdmin):
    list_display = (
        "token_number",
        "citizen_id",
        "office_id",
        "department_id",
        "appointment_date",
        "status",
        "created_at",
        "served_by",
    )
    list_filter = ("status", "appointment_date", "office_id", "department_id")
    search_fields = ("token_number", "citizen_id")
    ordering = ("-appointment_date", "created_at")
    # Status changes go through the scheduler so events and locks apply
    readonly_fields = (
        "queue_key",
        "status",
        "created_at",
        "booked_at",
        "called_at",
        "served_by",
        "served_at",
        "updated_at",
    )

    fieldsets = (
        (None, {"fields": ("token_number", "citizen_id", "status")}),
        (
            _("Queue"),
            {"fields": ("office_id", "department_id", "appointment_date", "appointment_time", "queue_key")},
        ),
        (_("Service"), {"fields": ("office_name", "department_name", "service_name", "document_refs")}),
        (
            _("Timeline"),
            {"fields": ("booked_at", "created_at", "called_at", "served_by", "served_at", "updated_at")},
        ),
    )


@admin.register(OfficialAssignment)
class OfficialAssignmentAdmin(admin.ModelAdmin):
    list_display = ("user", "office_id", "department_id", "is_active", "created_at")
    list_filter = ("is_active", "office_id")
    search_fields = ("office_id", "department_id")
    raw_id_fields = ("user",)
