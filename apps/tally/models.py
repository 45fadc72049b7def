from __future__ import annotations

import hashlib
import json
from contextvars import ContextVar
from uuid import uuid4

from django.core.exceptions import PermissionDenied, ValidationError
from django.db import models, transaction

from apps.tally import clock
from apps.tally.constants import LOCATION_MAX_LENGTH, TALLY_CARD_NUMBER_MAX_LENGTH, ReasonCode, WriteMode


# Only apps.tally.ledger may set this to True while replacing a breakdown.
LEDGER_WRITE_ALLOWED: ContextVar[bool] = ContextVar("LEDGER_WRITE_ALLOWED", default=False)


def compute_hashdiff(*, reason_code, note, qty, location, multi_location) -> str:
    payload = json.dumps(
        [reason_code, note, qty, location, bool(multi_location)],
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TallyCardEntry(models.Model):
    """
    One immutable version of a tally card adjustment (SCD2 row).

    qty/location/multi_location are derived from the location rows owned by
    this version; they are written by EntryWriter, never hand-set.
    """

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    company_id = models.UUIDField()

    tally_card_number = models.CharField(max_length=TALLY_CARD_NUMBER_MAX_LENGTH)

    reason_code = models.CharField(max_length=32, choices=ReasonCode.choices, default=ReasonCode.UNSPECIFIED)
    note = models.TextField(null=True, blank=True)

    multi_location = models.BooleanField(default=False)
    qty = models.IntegerField(null=True, blank=True)
    location = models.TextField(null=True, blank=True)

    hashdiff = models.CharField(max_length=64, editable=False)
    write_mode = models.CharField(
        max_length=16,
        choices=[(WriteMode.METADATA, WriteMode.METADATA), (WriteMode.AGGREGATE, WriteMode.AGGREGATE)],
    )
    supersedes = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="superseded_by",
        help_text="Version this row was built on (lineage only; currency is decided by the pointer).",
    )

    actor_id = models.UUIDField(null=True, blank=True)
    updated_at = models.DateTimeField(editable=False)

    class Meta:
        db_table = "tally_card_entries"
        indexes = [
            models.Index(
                fields=["company_id", "tally_card_number", "-updated_at", "-id"],
                name="tally_entry_key_latest_idx",
            ),
            models.Index(fields=["company_id", "updated_at"], name="tally_entry_company_upd_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.tally_card_number} @ {self.updated_at:%Y-%m-%d %H:%M:%S} ({self.id})"

    def clean(self):
        super().clean()

        self.tally_card_number = (self.tally_card_number or "").strip()
        if not self.tally_card_number:
            raise ValidationError("tally_card_number is required")

        if self.supersedes_id:
            prev = self.supersedes
            if prev.company_id != self.company_id:
                raise ValidationError("company_id mismatch between version and superseded version")
            if prev.tally_card_number != self.tally_card_number:
                raise ValidationError("a version can only supersede a version of the same tally card")

    def save(self, *args, **kwargs):
        if self.pk and not self._state.adding:
            raise PermissionDenied("TallyCardEntry is immutable (append-only); write a new version")

        if self.updated_at is None:
            self.updated_at = clock.now()

        self.hashdiff = compute_hashdiff(
            reason_code=self.reason_code,
            note=self.note,
            qty=self.qty,
            location=self.location,
            multi_location=self.multi_location,
        )
        self.full_clean()

        with transaction.atomic():
            result = super().save(*args, **kwargs)

            from apps.tally.hooks import on_entry_insert

            on_entry_insert(entry=self)

        return result

    def delete(self, *args, **kwargs):
        raise PermissionDenied("TallyCardEntry delete is forbidden (history is immutable)")


class LedgerQuerySet(models.QuerySet):
    """
    Location rows are only ever bulk-deleted by owner and bulk-inserted,
    and only from inside the ledger.
    """

    def _require_ledger(self, action: str) -> None:
        if not LEDGER_WRITE_ALLOWED.get():
            raise PermissionDenied(f"TallyCardEntryLocation {action} must go through apps.tally.ledger")

    def delete(self):
        self._require_ledger("delete")
        return super().delete()

    delete.queryset_only = True

    def update(self, **kwargs):
        raise PermissionDenied("TallyCardEntryLocation rows are never updated in place; replace the breakdown")

    def bulk_create(self, objs, *args, **kwargs):
        self._require_ledger("insert")
        return super().bulk_create(objs, *args, **kwargs)


class TallyCardEntryLocation(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    company_id = models.UUIDField()

    # Owned by a version id, not by the business key: a new version means migrating these rows.
    entry = models.ForeignKey(TallyCardEntry, on_delete=models.PROTECT, related_name="locations")

    location = models.CharField(max_length=LOCATION_MAX_LENGTH)
    qty = models.IntegerField()
    pos = models.PositiveIntegerField()

    created_at = models.DateTimeField(auto_now_add=True)

    objects = LedgerQuerySet.as_manager()

    class Meta:
        db_table = "tally_card_entry_locations"
        ordering = ["entry", "pos"]
        constraints = [
            models.UniqueConstraint(fields=["entry", "pos"], name="uq_tally_location_entry_pos"),
        ]
        indexes = [
            models.Index(fields=["company_id", "entry"], name="tally_loc_company_entry_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.location}: {self.qty}"

    def save(self, *args, **kwargs):
        if self.pk and not self._state.adding:
            raise PermissionDenied("TallyCardEntryLocation rows are never updated in place; replace the breakdown")
        if not LEDGER_WRITE_ALLOWED.get():
            raise PermissionDenied("TallyCardEntryLocation insert must go through apps.tally.ledger")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if not LEDGER_WRITE_ALLOWED.get():
            raise PermissionDenied("TallyCardEntryLocation delete must go through apps.tally.ledger")
        return super().delete(*args, **kwargs)


class TallyCardPointer(models.Model):
    """
    Read-model: the current version per business key.

    Advanced in the same transaction as every version insert; the unique
    constraint guarantees exactly one current version per key.
    """

    company_id = models.UUIDField()
    tally_card_number = models.CharField(max_length=TALLY_CARD_NUMBER_MAX_LENGTH)

    entry = models.ForeignKey(TallyCardEntry, on_delete=models.PROTECT, related_name="+")

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "tally_card_pointers"
        constraints = [
            models.UniqueConstraint(
                fields=["company_id", "tally_card_number"],
                name="uq_tally_pointer_company_card",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.tally_card_number} -> {self.entry_id}"
