# apps/tally/writer.py
from __future__ import annotations

import logging
from uuid import UUID

from django.core.exceptions import ValidationError

from apps.tally.aggregation import is_multi_location, location_summary, total_qty
from apps.tally.constants import TALLY_CARD_NUMBER_MAX_LENGTH, ReasonCode, WriteMode
from apps.tally.ledger import locations_for
from apps.tally.models import TallyCardEntry
from apps.tally.resolver import get_version, rederive_current, resolve_current

logger = logging.getLogger(__name__)


def clean_tally_card_number(tally_card_number) -> str:
    if tally_card_number is None:
        tally_card_number = ""
    if not isinstance(tally_card_number, str):
        raise ValidationError("tally_card_number must be a string")
    tally_card_number = tally_card_number.strip()
    if not tally_card_number:
        raise ValidationError("tally_card_number is required")
    if len(tally_card_number) > TALLY_CARD_NUMBER_MAX_LENGTH:
        raise ValidationError(f"tally_card_number too long (max {TALLY_CARD_NUMBER_MAX_LENGTH})")
    return tally_card_number


def clean_reason_code(reason_code) -> str:
    if reason_code in (None, ""):
        return ReasonCode.UNSPECIFIED
    if reason_code not in ReasonCode.values:
        raise ValidationError(f"unknown reason_code {reason_code!r}")
    return reason_code


class EntryWriter:
    """
    Inserts new TallyCardEntry versions. Every call creates a row; callers
    must use the returned id and never assume it equals the id they passed.
    """

    def _insert(self, **fields) -> TallyCardEntry:
        entry = TallyCardEntry(**fields)
        entry.save()
        logger.debug(
            "version %s written for %s (%s, supersedes=%s)",
            entry.id,
            entry.tally_card_number,
            entry.write_mode,
            entry.supersedes_id,
        )
        return entry

    def write_metadata(
        self,
        company_id: UUID,
        tally_card_number: str,
        reason_code=ReasonCode.UNSPECIFIED,
        note: str | None = None,
        *,
        actor_id: UUID | None = None,
    ) -> UUID:
        """
        New version carrying reason/note only.

        qty/location are not part of this payload: the stored aggregate of the
        predecessor is carried forward unchanged (None for a new tally card)
        until the aggregate write recomputes it from the location rows.
        """
        tally_card_number = clean_tally_card_number(tally_card_number)
        reason_code = clean_reason_code(reason_code)

        current_id = resolve_current(company_id, tally_card_number)
        previous = get_version(current_id) if current_id else None

        entry = self._insert(
            company_id=company_id,
            tally_card_number=tally_card_number,
            reason_code=reason_code,
            note=note,
            qty=previous.qty if previous else None,
            location=previous.location if previous else None,
            multi_location=previous.multi_location if previous else False,
            write_mode=WriteMode.METADATA,
            supersedes=previous,
            actor_id=actor_id,
        )
        return entry.id

    def write_aggregate(
        self,
        version_id,
        qty: int,
        location: str | None,
        *,
        actor_id: UUID | None = None,
    ) -> UUID:
        """
        New version with the aggregate of the rows owned by version_id.

        The payload must equal the aggregate of those rows; multi_location is
        derived from their count and cannot be supplied.
        """
        rows = locations_for(version_id)
        if not rows:
            raise ValidationError(f"version {version_id} owns no location rows; stage locations first")

        expected_qty = total_qty(rows)
        expected_location = location_summary(rows)
        if qty != expected_qty or (location or None) != expected_location:
            raise ValidationError(
                f"aggregate ({qty!r}, {location!r}) does not match location rows "
                f"({expected_qty!r}, {expected_location!r})"
            )

        base = get_version(rederive_current(version_id))

        entry = self._insert(
            company_id=base.company_id,
            tally_card_number=base.tally_card_number,
            reason_code=base.reason_code,
            note=base.note,
            qty=expected_qty,
            location=expected_location,
            multi_location=is_multi_location(rows),
            write_mode=WriteMode.AGGREGATE,
            supersedes=base,
            actor_id=actor_id,
        )
        return entry.id
