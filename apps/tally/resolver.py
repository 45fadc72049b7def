# apps/tally/resolver.py
from __future__ import annotations

import hashlib
import logging
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db import connection, transaction

from apps.tally.errors import ResolveError
from apps.tally.models import TallyCardEntry, TallyCardPointer

logger = logging.getLogger(__name__)


def resolve_by_scan(company_id: UUID, tally_card_number: str) -> UUID | None:
    """
    Current version by full scan: greatest updated_at, ties broken by greatest id.
    """
    return (
        TallyCardEntry.objects.filter(company_id=company_id, tally_card_number=tally_card_number)
        .order_by("-updated_at", "-id")
        .values_list("id", flat=True)
        .first()
    )


def resolve_current(company_id: UUID, tally_card_number: str) -> UUID | None:
    """
    Current version id for a business key, or None if the key was never written.

    Pointer lookup first; rows written before the pointer existed fall back
    to the scan and repair the pointer.
    """
    tally_card_number = (tally_card_number or "").strip()
    if not tally_card_number:
        raise ResolveError("tally_card_number is required")

    entry_id = (
        TallyCardPointer.objects.filter(company_id=company_id, tally_card_number=tally_card_number)
        .values_list("entry_id", flat=True)
        .first()
    )
    if entry_id is not None:
        return entry_id

    entry_id = resolve_by_scan(company_id, tally_card_number)
    if entry_id is not None:
        logger.warning("missing pointer for %s; repaired from scan -> %s", tally_card_number, entry_id)
        with transaction.atomic():
            TallyCardPointer.objects.update_or_create(
                company_id=company_id,
                tally_card_number=tally_card_number,
                defaults={"entry_id": entry_id},
            )
    return entry_id


def get_version(version_id) -> TallyCardEntry:
    try:
        return TallyCardEntry.objects.get(id=version_id)
    except (TallyCardEntry.DoesNotExist, ValueError, ValidationError) as exc:
        raise ResolveError(f"unknown tally card version {version_id}", version_id=version_id) from exc


def rederive_current(version_id) -> UUID:
    """
    True current id for whatever business key version_id belongs to.
    A caller-supplied id is a hint, never trusted as current.
    """
    version = get_version(version_id)
    current = resolve_current(version.company_id, version.tally_card_number)
    if current is None:
        raise ResolveError(f"no current version for {version.tally_card_number}", version_id=version_id)
    if current != version.id:
        logger.info("stale version hint %s for %s; current is %s", version_id, version.tally_card_number, current)
    return current


def is_current(version_id) -> bool:
    version = get_version(version_id)
    return resolve_current(version.company_id, version.tally_card_number) == version.id


def _advisory_key(company_id: UUID, tally_card_number: str) -> int:
    digest = hashlib.blake2b(f"{company_id}:{tally_card_number}".encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def lock_business_key(company_id: UUID, tally_card_number: str) -> None:
    """
    Per-key mutual exclusion for the duration of the enclosing transaction.
    """
    if not connection.in_atomic_block:
        raise RuntimeError("lock_business_key must run inside transaction.atomic()")

    if connection.vendor == "postgresql":
        with connection.cursor() as cursor:
            cursor.execute("SELECT pg_advisory_xact_lock(%s);", [_advisory_key(company_id, tally_card_number)])
        return

    TallyCardPointer.objects.select_for_update().filter(
        company_id=company_id, tally_card_number=tally_card_number
    ).only("id").first()
