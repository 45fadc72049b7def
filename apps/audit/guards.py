# apps/audit/guards.py
from __future__ import annotations

import json

from django.core.exceptions import PermissionDenied, ValidationError
from django.core.serializers.json import DjangoJSONEncoder

from apps.tenancy.context import get_active_company_id

from .constants import MAX_PAYLOAD_BYTES
from .events import AuditEventSpec, get_event_spec


def guard_event_registry(event_name: str) -> AuditEventSpec:
    """
    Unknown events fail closed.
    """
    spec = get_event_spec(event_name)
    if not spec:
        raise ValidationError(
            f"Unknown audit event '{event_name}'. "
            f"Register it in apps.audit.events."
        )
    return spec


def guard_system_only(spec: AuditEventSpec, context):
    if spec.system_only and not getattr(context, "is_system", False):
        raise PermissionDenied(f"Audit event '{spec.name}' is system-only")


def guard_tenant_scope(context):
    """
    Non-system events need a company_id, and inside a request it must be
    the company the request is scoped to.
    """
    if getattr(context, "is_system", False):
        return

    company_id = getattr(context, "company_id", None)
    if not company_id:
        raise PermissionDenied("Audit context missing company_id")

    active = get_active_company_id()
    if active is not None and str(active) != str(company_id):
        raise PermissionDenied("Audit context company_id does not match the active company scope")


def guard_payload(spec: AuditEventSpec, payload):
    if payload is None:
        payload = {}

    if not isinstance(payload, dict):
        raise ValidationError("Audit payload must be a dict")

    try:
        encoded = json.dumps(payload, cls=DjangoJSONEncoder)
    except TypeError as exc:
        raise ValidationError(f"Audit payload is not JSON serializable: {exc}") from exc

    limit = spec.max_payload_bytes_override or MAX_PAYLOAD_BYTES
    if len(encoded.encode("utf-8")) > limit:
        raise ValidationError(f"Audit payload too large (limit {limit} bytes)")

    missing = spec.required_keys - set(payload)
    if missing:
        raise ValidationError(f"Audit payload missing keys: {sorted(missing)}")


def run_guards(*, event_name: str, payload: dict, context) -> AuditEventSpec:
    """
    Order is locked:
    1) Registry enforcement
    2) System-only enforcement
    3) Tenant scope enforcement
    4) Payload validation
    """
    spec = guard_event_registry(event_name)
    guard_system_only(spec, context)
    guard_tenant_scope(context)
    guard_payload(spec, payload)
    return spec
