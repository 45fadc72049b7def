# apps/audit/admin.py
import json

from django.contrib import admin
from django.core.exceptions import PermissionDenied
from django.core.serializers.json import DjangoJSONEncoder
from django.utils.html import format_html

from .models import AuditEvent


class AppendOnlyAdmin(admin.ModelAdmin):
    """
    Browse-only admin for append-only tables: rows are written by their
    own entry points (emit_audit_event(), EntryWriter, the tally ledger).
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def delete_model(self, request, obj):
        raise PermissionDenied(f"{obj._meta.object_name} is append-only; delete forbidden")

    def delete_queryset(self, request, queryset):
        raise PermissionDenied(f"{queryset.model._meta.object_name} is append-only; bulk delete forbidden")


@admin.register(AuditEvent)
class AuditEventAdmin(AppendOnlyAdmin):
    list_display = ("created_at", "event_name", "company_id", "actor_id")
    list_filter = ("event_name",)
    search_fields = ("event_name", "company_id", "actor_id")
    date_hierarchy = "created_at"
    ordering = ("-created_at",)
    readonly_fields = ("event_name", "company_id", "actor_id", "pretty_payload", "created_at")
    exclude = ("payload",)

    @admin.display(description="payload")
    def pretty_payload(self, obj):
        return format_html(
            "<pre>{}</pre>", json.dumps(obj.payload, cls=DjangoJSONEncoder, indent=2, sort_keys=True)
        )
