# apps/tally/hooks.py
from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import transaction

from apps.audit.constants import MAX_STRING_CHARS
from apps.audit.context import AuditContext
from apps.audit.hooks import emit_audit_event

logger = logging.getLogger(__name__)


def _newer(a, b) -> bool:
    """(updated_at, id) lexicographic order: True if a is later than b."""
    return (a.updated_at, str(a.id)) > (b.updated_at, str(b.id))


def on_entry_insert(*, entry) -> None:
    """
    Advance TallyCardPointer after a TallyCardEntry insert.

    - No model imports at module import time (prevents circular imports).
    - select_for_update on the pointer row keeps the advance deterministic.
    - The pointer only moves forward in (updated_at, id) order, so it always
      agrees with a full scan of the key's versions.
    """
    from apps.tally.models import TallyCardEntry, TallyCardPointer  # local import

    if not isinstance(entry, TallyCardEntry):
        raise ValidationError("on_entry_insert: invalid entry type")

    with transaction.atomic():
        pointer = (
            TallyCardPointer.objects.select_for_update()
            .select_related("entry")
            .filter(company_id=entry.company_id, tally_card_number=entry.tally_card_number)
            .first()
        )
        if pointer is None:
            TallyCardPointer.objects.create(
                company_id=entry.company_id,
                tally_card_number=entry.tally_card_number,
                entry=entry,
            )
        elif _newer(entry, pointer.entry):
            pointer.entry = entry
            pointer.save(update_fields=["entry", "updated_at"])
        else:
            logger.warning(
                "tally entry %s inserted behind current version %s for %s; pointer unchanged",
                entry.id,
                pointer.entry_id,
                entry.tally_card_number,
            )

        emit_audit_event(
            event_name="tally.entry.versioned",
            payload={
                "entry_id": str(entry.id),
                "tally_card_number": entry.tally_card_number,
                "supersedes_id": str(entry.supersedes_id) if entry.supersedes_id else None,
                "write_mode": entry.write_mode,
                "hashdiff": entry.hashdiff,
            },
            context=AuditContext(company_id=entry.company_id),
            actor_id=entry.actor_id,
        )


def on_locations_replaced(*, entry, previous_entry_id, rows, fingerprint: str, actor_id=None) -> None:
    emit_audit_event(
        event_name="tally.locations.replaced",
        payload={
            "entry_id": str(entry.id),
            "previous_entry_id": str(previous_entry_id) if previous_entry_id else None,
            "count": len(rows),
            "fingerprint": fingerprint,
        },
        context=AuditContext(company_id=entry.company_id),
        actor_id=actor_id,
    )


def on_adjustment_applied(*, company_id, result, actor_id=None) -> None:
    emit_audit_event(
        event_name="tally.adjustment.applied",
        payload={
            "tally_card_number": result.tally_card_number,
            "initial_entry_id": str(result.initial_version_id),
            "final_entry_id": str(result.version_id),
            "qty": result.qty,
            "location": result.location,
            "versions_written": result.versions_written,
            "reconcile_attempts": result.reconcile_attempts,
        },
        context=AuditContext(company_id=company_id),
        actor_id=actor_id,
    )


def on_adjustment_failed(*, company_id, tally_card_number: str, step: str, error: Exception, actor_id=None) -> None:
    """
    Emit OUTSIDE the saga transaction (so it persists after the rollback).
    Best-effort: audit failure must not mask the original error.
    """
    try:
        emit_audit_event(
            event_name="tally.adjustment.failed",
            payload={
                "tally_card_number": tally_card_number,
                "step": step,
                "error": str(error)[:MAX_STRING_CHARS],
            },
            context=AuditContext(company_id=company_id),
            actor_id=actor_id,
        )
    except Exception:
        logger.exception("could not record tally.adjustment.failed for %s", tally_card_number)
