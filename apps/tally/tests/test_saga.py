from __future__ import annotations

from uuid import uuid4

from django.core.exceptions import ValidationError
from django.test import TestCase, override_settings

from apps.audit.models import AuditEvent
from apps.tally.constants import ReasonCode, WriteMode
from apps.tally.errors import AggregateWriteError, MigrationError, ResolveError
from apps.tally.ledger import locations_for, replace_locations
from apps.tally.models import TallyCardEntry, TallyCardEntryLocation, TallyCardPointer
from apps.tally.resolver import get_version, resolve_by_scan, resolve_current
from apps.tally.saga import AdjustmentSaga, apply_adjustment
from apps.tally.writer import EntryWriter


class ChainingWriter(EntryWriter):
    """Versions the card once more right after each aggregate write, up to `chain` times."""

    def __init__(self, chain: int = 1):
        self.chain = chain

    def write_aggregate(self, version_id, qty, location, *, actor_id=None):
        new_id = super().write_aggregate(version_id, qty, location, actor_id=actor_id)
        if self.chain > 0:
            self.chain -= 1
            base = get_version(new_id)
            self.write_metadata(base.company_id, base.tally_card_number, base.reason_code, base.note)
        return new_id


class RunawayWriter(EntryWriter):
    """Every aggregate write is followed by a version that drops the aggregate."""

    def write_aggregate(self, version_id, qty, location, *, actor_id=None):
        new_id = super().write_aggregate(version_id, qty, location, actor_id=actor_id)
        base = get_version(new_id)
        self._insert(
            company_id=base.company_id,
            tally_card_number=base.tally_card_number,
            reason_code=base.reason_code,
            note=base.note,
            write_mode=WriteMode.METADATA,
            supersedes=base,
        )
        return new_id


class BrokenWriter(EntryWriter):
    def write_aggregate(self, version_id, qty, location, *, actor_id=None):
        raise RuntimeError("disk on fire")


class AdjustmentSagaTests(TestCase):
    def setUp(self) -> None:
        self.company_id = uuid4()

    def assertConsistent(self, result, tally_card_number: str):
        current = resolve_current(self.company_id, tally_card_number)
        self.assertEqual(result.version_id, current)
        self.assertEqual(resolve_by_scan(self.company_id, tally_card_number), current)

        entry = get_version(current)
        rows = locations_for(current)
        self.assertEqual(entry.qty, sum(r.qty for r in rows))
        self.assertEqual(entry.multi_location, len(rows) > 1)

        others = TallyCardEntryLocation.objects.filter(
            entry__company_id=self.company_id, entry__tally_card_number=tally_card_number
        ).exclude(entry_id=current)
        self.assertFalse(others.exists())
        self.assertEqual(
            TallyCardPointer.objects.filter(company_id=self.company_id, tally_card_number=tally_card_number).count(),
            1,
        )

    def test_new_card_two_locations(self):
        result = apply_adjustment(
            self.company_id,
            "TC-000123",
            rows=[{"location": "A1", "qty": 10}, {"location": "B2", "qty": -3}],
            reason_code=ReasonCode.ADJUSTMENT,
        )

        self.assertEqual(result.qty, 7)
        self.assertEqual(result.location, "A1, B2")
        self.assertTrue(result.multi_location)
        self.assertEqual(len(locations_for(result.version_id)), 2)
        self.assertIsNone(result.prior_version_id)
        self.assertNotEqual(result.version_id, result.initial_version_id)
        self.assertConsistent(result, "TC-000123")

        applied = AuditEvent.objects.get(event_name="tally.adjustment.applied", company_id=self.company_id)
        self.assertEqual(applied.payload["final_entry_id"], str(result.version_id))

    def test_single_location(self):
        result = apply_adjustment(self.company_id, "TC-1", rows=[{"location": "A1", "qty": 5}])
        self.assertEqual((result.qty, result.location, result.multi_location), (5, "A1", False))
        self.assertConsistent(result, "TC-1")

    def test_zero_quantity_is_a_valid_count(self):
        result = apply_adjustment(
            self.company_id, "TC-1", rows=[{"location": "A1", "qty": 0}], reason_code=ReasonCode.FOUND
        )
        self.assertEqual(result.qty, 0)
        entry = get_version(result.version_id)
        self.assertEqual(entry.qty, 0)
        self.assertEqual(entry.reason_code, ReasonCode.FOUND)

    def test_rerun_with_same_input_converges(self):
        rows = [{"location": "A1", "qty": 10}, {"location": "B2", "qty": -3}]
        first = apply_adjustment(self.company_id, "TC-1", rows=rows, reason_code=ReasonCode.RECOUNT, note="q3")
        second = apply_adjustment(self.company_id, "TC-1", rows=rows, reason_code=ReasonCode.RECOUNT, note="q3")

        self.assertNotEqual(first.version_id, second.version_id)
        self.assertEqual((first.qty, first.location), (second.qty, second.location))
        self.assertEqual(first.fingerprint, second.fingerprint)
        # Unchanged metadata: the second run builds on the first result directly.
        self.assertEqual(second.initial_version_id, first.version_id)
        self.assertConsistent(second, "TC-1")

    def test_changed_metadata_writes_a_metadata_version_first(self):
        first = apply_adjustment(self.company_id, "TC-1", rows=[{"location": "A1", "qty": 1}])
        second = apply_adjustment(
            self.company_id, "TC-1", rows=[{"location": "B2", "qty": 2}], reason_code=ReasonCode.TRANSFER
        )

        initial = get_version(second.initial_version_id)
        self.assertEqual(initial.write_mode, WriteMode.METADATA)
        self.assertEqual(initial.supersedes_id, first.version_id)
        self.assertEqual(second.prior_version_id, first.version_id)
        self.assertEqual((second.qty, second.location), (2, "B2"))
        self.assertConsistent(second, "TC-1")

    def test_stale_version_hint_is_rederived(self):
        first = apply_adjustment(self.company_id, "TC-1", rows=[{"location": "A1", "qty": 1}])
        result = apply_adjustment(
            self.company_id,
            "TC-1",
            rows=[{"location": "A1", "qty": 3}],
            version_hint=first.initial_version_id,
        )
        self.assertEqual(result.qty, 3)
        self.assertConsistent(result, "TC-1")

    def test_hint_from_another_card_is_refused(self):
        other = apply_adjustment(self.company_id, "TC-2", rows=[{"location": "A1", "qty": 1}])
        with self.assertRaises(ResolveError):
            apply_adjustment(
                self.company_id, "TC-1", rows=[{"location": "A1", "qty": 1}], version_hint=other.version_id
            )
        self.assertIsNone(resolve_current(self.company_id, "TC-1"))

    def test_chained_versioning_is_reconciled(self):
        result = AdjustmentSaga(writer=ChainingWriter(chain=1)).run(
            self.company_id, "TC-1", rows=[{"location": "A1", "qty": 4}, {"location": "B2", "qty": 1}]
        )
        self.assertEqual(result.qty, 5)
        self.assertTrue(result.multi_location)
        self.assertEqual(get_version(result.version_id).write_mode, WriteMode.METADATA)
        self.assertConsistent(result, "TC-1")

    def test_runaway_versioning_exceeds_the_bound(self):
        with self.assertRaises(MigrationError) as ctx:
            AdjustmentSaga(writer=RunawayWriter(), max_reconcile_attempts=2).run(
                self.company_id, "TC-1", rows=[{"location": "A1", "qty": 4}]
            )

        self.assertEqual(ctx.exception.step, "reconcile")
        self.assertFalse(TallyCardEntry.objects.filter(company_id=self.company_id).exists())

        failed = AuditEvent.objects.get(event_name="tally.adjustment.failed", company_id=self.company_id)
        self.assertEqual(failed.payload["step"], "reconcile")

    @override_settings(TALLY_MAX_RECONCILE_ATTEMPTS=1)
    def test_bound_comes_from_settings(self):
        self.assertEqual(AdjustmentSaga().max_reconcile_attempts, 1)
        with self.assertRaises(ValueError):
            AdjustmentSaga(max_reconcile_attempts=0)

    def test_failing_step_rolls_back_every_step(self):
        first = apply_adjustment(self.company_id, "TC-1", rows=[{"location": "A1", "qty": 1}])
        versions_before = TallyCardEntry.objects.filter(company_id=self.company_id).count()

        with self.assertLogs("apps.tally.saga", level="WARNING"):
            with self.assertRaises(AggregateWriteError) as ctx:
                AdjustmentSaga(writer=BrokenWriter()).run(
                    self.company_id,
                    "TC-1",
                    rows=[{"location": "Z9", "qty": 9}],
                    reason_code=ReasonCode.DAMAGED,
                )

        self.assertEqual(ctx.exception.step, "commit")
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(TallyCardEntry.objects.filter(company_id=self.company_id).count(), versions_before)
        self.assertEqual(resolve_current(self.company_id, "TC-1"), first.version_id)
        self.assertEqual([(r.location, r.qty) for r in locations_for(first.version_id)], [("A1", 1)])

    def test_invalid_rows_write_nothing(self):
        for rows in ([], [{"location": "A1", "qty": 1.5}], [{"location": "", "qty": 1}]):
            with self.subTest(rows=rows):
                with self.assertRaises(ValidationError):
                    apply_adjustment(self.company_id, "TC-1", rows=rows)
        self.assertFalse(TallyCardEntry.objects.filter(company_id=self.company_id).exists())
        self.assertFalse(AuditEvent.objects.filter(company_id=self.company_id).exists())

    def test_bad_card_number_is_rejected_before_any_write(self):
        for number in ("T" * 65, 123, "   "):
            with self.subTest(number=number):
                with self.assertRaises(ValidationError):
                    apply_adjustment(self.company_id, number, rows=[{"location": "A1", "qty": 1}])
        self.assertFalse(TallyCardEntry.objects.filter(company_id=self.company_id).exists())
        self.assertFalse(AuditEvent.objects.filter(company_id=self.company_id).exists())

    def test_repairs_rows_left_under_a_superseded_version(self):
        # Interrupted three-call flow: rows staged on v0, then a new version appeared.
        writer = EntryWriter()
        v0 = writer.write_metadata(self.company_id, "TC-1")
        replace_locations(v0, [{"location": "A1", "qty": 2}])
        writer.write_metadata(self.company_id, "TC-1", note="edited elsewhere")

        result = apply_adjustment(
            self.company_id, "TC-1", rows=[{"location": "A1", "qty": 2}], note="edited elsewhere"
        )
        self.assertEqual(result.qty, 2)
        self.assertConsistent(result, "TC-1")
