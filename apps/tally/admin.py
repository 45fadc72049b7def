# apps/tally/admin.py
from django.contrib import admin

from apps.audit.admin import AppendOnlyAdmin

from .models import TallyCardEntry, TallyCardEntryLocation, TallyCardPointer


class TallyCardEntryLocationInline(admin.TabularInline):
    model = TallyCardEntryLocation
    fields = ("pos", "location", "qty", "created_at")
    readonly_fields = fields
    ordering = ("pos",)
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(TallyCardEntry)
class TallyCardEntryAdmin(AppendOnlyAdmin):
    list_display = (
        "tally_card_number",
        "company_id",
        "write_mode",
        "reason_code",
        "qty",
        "location",
        "multi_location",
        "updated_at",
    )
    list_filter = ("write_mode", "reason_code", "multi_location")
    search_fields = ("tally_card_number", "location", "company_id")
    ordering = ("-updated_at",)
    readonly_fields = (
        "id",
        "company_id",
        "tally_card_number",
        "reason_code",
        "note",
        "qty",
        "location",
        "multi_location",
        "write_mode",
        "supersedes",
        "hashdiff",
        "actor_id",
        "updated_at",
    )
    inlines = [TallyCardEntryLocationInline]


@admin.register(TallyCardEntryLocation)
class TallyCardEntryLocationAdmin(AppendOnlyAdmin):
    list_display = ("entry", "pos", "location", "qty", "company_id", "created_at")
    search_fields = ("location", "entry__tally_card_number")
    ordering = ("entry", "pos")
    readonly_fields = ("entry", "company_id", "location", "qty", "pos", "created_at")


@admin.register(TallyCardPointer)
class TallyCardPointerAdmin(AppendOnlyAdmin):
    list_display = ("tally_card_number", "company_id", "entry", "updated_at")
    search_fields = ("tally_card_number", "company_id")
    ordering = ("tally_card_number",)
    readonly_fields = ("company_id", "tally_card_number", "entry", "updated_at")
