from __future__ import annotations

from uuid import uuid4

from django.core.exceptions import PermissionDenied
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from .context import AUDIT_EMIT_ALLOWED
from .guards import guard_event_registry, guard_payload


class AuditEvent(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)

    event_name = models.CharField(max_length=128)
    # NULL only for system-level events (e.g. maintenance commands)
    company_id = models.UUIDField(null=True, blank=True)
    actor_id = models.UUIDField(null=True, blank=True)
    payload = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "audit_events"
        indexes = [
            models.Index(fields=["company_id", "created_at"], name="audit_evt_company_created_idx"),
            models.Index(fields=["event_name", "created_at"], name="audit_evt_name_created_idx"),
        ]

    def save(self, *args, **kwargs):
        # Append-only: no updates (only inserts)
        if self.pk and not self._state.adding:
            raise PermissionDenied("AuditEvent is immutable (append-only)")

        # EntryPoint lock: only emit_audit_event() may write
        if not AUDIT_EMIT_ALLOWED.get():
            raise PermissionDenied("AuditEvent writes must go through emit_audit_event()")

        # Model-level guards (bypass-resistant)
        spec = guard_event_registry(self.event_name)
        guard_payload(spec, self.payload)

        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PermissionDenied("AuditEvent delete is forbidden (append-only)")
