# apps/tally/ledger.py
from __future__ import annotations

import logging
from typing import Any, Iterable
from uuid import UUID

from django.db import transaction

from apps.tally.aggregation import fingerprint_locations, normalize_locations
from apps.tally.errors import LedgerReplaceError, ResolveError, StaleVersionError
from apps.tally.models import LEDGER_WRITE_ALLOWED, TallyCardEntryLocation
from apps.tally.resolver import get_version, is_current, resolve_current

logger = logging.getLogger(__name__)


def locations_for(version_id) -> list[TallyCardEntryLocation]:
    return list(TallyCardEntryLocation.objects.filter(entry_id=version_id).order_by("pos"))


def current_locations(version_id) -> list[TallyCardEntryLocation]:
    """
    Breakdown of a version that must be current; reading a superseded
    version's rows is refused rather than silently served.
    """
    if not is_current(version_id):
        raise StaleVersionError(f"tally card version {version_id} is not the current version", version_id=version_id)
    return locations_for(version_id)


def orphaned_locations(company_id: UUID, tally_card_number: str) -> list[TallyCardEntryLocation]:
    current = resolve_current(company_id, tally_card_number)
    qs = TallyCardEntryLocation.objects.filter(
        entry__company_id=company_id,
        entry__tally_card_number=tally_card_number,
    )
    if current is not None:
        qs = qs.exclude(entry_id=current)
    return list(qs.order_by("entry_id", "pos"))


def _load_target(version_id):
    try:
        return get_version(version_id)
    except ResolveError as exc:
        raise LedgerReplaceError(str(exc), version_id=version_id) from exc


def replace_locations(
    version_id,
    rows: Iterable[Any],
    previous_version_id=None,
    *,
    adopt_orphans: bool = False,
    actor_id=None,
) -> list[TallyCardEntryLocation]:
    """
    Replace the whole breakdown owned by version_id.

    Deletes every row owned by previous_version_id (ownership transfer) and by
    version_id, then inserts rows positioned 1..N under version_id.
    Validation happens before any write. The target must be the current
    version of its tally card.

    adopt_orphans also deletes rows owned by any other version of the same
    tally card, leaving the target as the only owner for the key.

    Delete and insert commit together. A version found with zero rows is
    never healed here; the caller re-runs the full replace.
    """
    desired = normalize_locations(rows)

    target = _load_target(version_id)
    owners = {target.id}

    if previous_version_id is not None and str(previous_version_id) != str(target.id):
        previous = _load_target(previous_version_id)
        if (previous.company_id, previous.tally_card_number) != (target.company_id, target.tally_card_number):
            raise LedgerReplaceError(
                "previous_version_id belongs to a different tally card",
                version_id=version_id,
            )
        owners.add(previous.id)
    else:
        previous = None

    if not is_current(target.id):
        raise StaleVersionError(
            f"tally card version {target.id} is not the current version",
            version_id=target.id,
            step=LedgerReplaceError.step,
        )

    token = LEDGER_WRITE_ALLOWED.set(True)
    try:
        with transaction.atomic():
            stale = TallyCardEntryLocation.objects.filter(entry_id__in=owners)
            if adopt_orphans:
                stale = TallyCardEntryLocation.objects.filter(
                    entry__company_id=target.company_id,
                    entry__tally_card_number=target.tally_card_number,
                )
            deleted, _ = stale.delete()
            TallyCardEntryLocation.objects.bulk_create(
                [
                    TallyCardEntryLocation(
                        company_id=target.company_id,
                        entry_id=target.id,
                        location=row.location,
                        qty=row.qty,
                        pos=row.pos,
                    )
                    for row in desired
                ]
            )
            persisted = locations_for(target.id)

            from apps.tally.hooks import on_locations_replaced

            on_locations_replaced(
                entry=target,
                previous_entry_id=previous.id if previous else None,
                rows=persisted,
                fingerprint=fingerprint_locations(persisted),
                actor_id=actor_id,
            )
    finally:
        LEDGER_WRITE_ALLOWED.reset(token)

    logger.debug(
        "replaced %s location rows on %s (removed %s, previous=%s)",
        len(persisted),
        target.id,
        deleted,
        previous.id if previous else None,
    )
    return persisted
