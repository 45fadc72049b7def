from __future__ import annotations

import logging

from apps.tenancy.context import get_active_actor_id

from .context import AUDIT_EMIT_ALLOWED
from .guards import run_guards
from .models import AuditEvent

logger = logging.getLogger(__name__)


def emit_audit_event(*, event_name: str, payload: dict, context, actor_id=None) -> AuditEvent:
    """
    The only write path for AuditEvent.

    actor_id falls back to the actor bound to the current request, if any.
    """
    run_guards(event_name=event_name, payload=payload, context=context)

    token = AUDIT_EMIT_ALLOWED.set(True)
    try:
        event = AuditEvent.objects.create(
            event_name=event_name,
            company_id=context.company_id,
            actor_id=actor_id or get_active_actor_id(),
            payload=payload or {},
        )
    finally:
        AUDIT_EMIT_ALLOWED.reset(token)

    logger.debug("audit %s recorded for company %s", event_name, context.company_id)
    return event
