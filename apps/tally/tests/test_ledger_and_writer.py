from __future__ import annotations

from uuid import uuid4

from django.core.exceptions import PermissionDenied, ValidationError
from django.test import TestCase

from apps.audit.models import AuditEvent
from apps.tally.constants import ReasonCode, WriteMode
from apps.tally.errors import LedgerReplaceError, StaleVersionError
from apps.tally.ledger import current_locations, locations_for, orphaned_locations, replace_locations
from apps.tally.models import TallyCardEntryLocation
from apps.tally.resolver import get_version, resolve_current
from apps.tally.writer import EntryWriter


class LocationLedgerTests(TestCase):
    def setUp(self) -> None:
        self.company_id = uuid4()
        self.writer = EntryWriter()
        self.v0 = self.writer.write_metadata(self.company_id, "TC-1", ReasonCode.ADJUSTMENT)

    def test_replace_positions_rows_and_audits(self):
        rows = replace_locations(
            self.v0,
            [{"location": "B2", "qty": -3, "pos": 5}, {"location": "A1", "qty": 10, "pos": 1}],
        )
        self.assertEqual([(r.location, r.qty, r.pos) for r in rows], [("A1", 10, 1), ("B2", -3, 2)])

        event = AuditEvent.objects.get(event_name="tally.locations.replaced", company_id=self.company_id)
        self.assertEqual(event.payload["entry_id"], str(self.v0))
        self.assertEqual(event.payload["count"], 2)

    def test_replace_is_whole_breakdown_not_merge(self):
        replace_locations(self.v0, [{"location": "A1", "qty": 1}, {"location": "B2", "qty": 2}])
        replace_locations(self.v0, [{"location": "C3", "qty": 3}])
        self.assertEqual([r.location for r in locations_for(self.v0)], ["C3"])

    def test_previous_owner_rows_move_to_target(self):
        replace_locations(self.v0, [{"location": "A1", "qty": 1}])
        v1 = self.writer.write_metadata(self.company_id, "TC-1", ReasonCode.RECOUNT)

        self.assertEqual(len(orphaned_locations(self.company_id, "TC-1")), 1)

        replace_locations(v1, [{"location": "A1", "qty": 4}], previous_version_id=self.v0)

        self.assertEqual(locations_for(self.v0), [])
        self.assertEqual([(r.location, r.qty) for r in locations_for(v1)], [("A1", 4)])
        self.assertEqual(orphaned_locations(self.company_id, "TC-1"), [])

    def test_empty_breakdown_rejected_before_any_write(self):
        replace_locations(self.v0, [{"location": "A1", "qty": 1}])
        with self.assertRaises(ValidationError):
            replace_locations(self.v0, [])
        self.assertEqual(len(locations_for(self.v0)), 1)

    def test_superseded_target_is_refused(self):
        self.writer.write_metadata(self.company_id, "TC-1", ReasonCode.RECOUNT)
        with self.assertRaises(StaleVersionError) as ctx:
            replace_locations(self.v0, [{"location": "A1", "qty": 1}])
        self.assertEqual(ctx.exception.step, "stage")

    def test_previous_from_another_card_is_refused(self):
        other = self.writer.write_metadata(self.company_id, "TC-2")
        with self.assertRaises(LedgerReplaceError):
            replace_locations(self.v0, [{"location": "A1", "qty": 1}], previous_version_id=other)

    def test_unknown_target_is_refused(self):
        with self.assertRaises(LedgerReplaceError):
            replace_locations(uuid4(), [{"location": "A1", "qty": 1}])

    def test_current_locations_refuses_superseded_version(self):
        replace_locations(self.v0, [{"location": "A1", "qty": 1}])
        self.assertEqual(len(current_locations(self.v0)), 1)

        self.writer.write_metadata(self.company_id, "TC-1", ReasonCode.RECOUNT)
        with self.assertRaises(StaleVersionError):
            current_locations(self.v0)

    def test_rows_cannot_be_written_outside_the_ledger(self):
        replace_locations(self.v0, [{"location": "A1", "qty": 1}])
        entry = get_version(self.v0)

        with self.assertRaises(PermissionDenied):
            TallyCardEntryLocation.objects.create(
                company_id=self.company_id, entry=entry, location="X", qty=1, pos=2
            )
        with self.assertRaises(PermissionDenied):
            TallyCardEntryLocation.objects.filter(entry=entry).delete()
        with self.assertRaises(PermissionDenied):
            TallyCardEntryLocation.objects.filter(entry=entry).update(qty=99)
        with self.assertRaises(PermissionDenied):
            locations_for(self.v0)[0].delete()

        self.assertEqual([(r.location, r.qty) for r in locations_for(self.v0)], [("A1", 1)])


class EntryWriterTests(TestCase):
    def setUp(self) -> None:
        self.company_id = uuid4()
        self.writer = EntryWriter()

    def test_metadata_write_on_new_key_has_no_aggregate(self):
        entry = get_version(self.writer.write_metadata(self.company_id, " TC-9 ", None, "hello"))
        self.assertEqual(entry.tally_card_number, "TC-9")
        self.assertEqual(entry.reason_code, ReasonCode.UNSPECIFIED)
        self.assertEqual(entry.write_mode, WriteMode.METADATA)
        self.assertIsNone(entry.qty)
        self.assertIsNone(entry.location)
        self.assertIsNone(entry.supersedes_id)

    def test_metadata_write_carries_predecessor_aggregate(self):
        v0 = self.writer.write_metadata(self.company_id, "TC-9")
        replace_locations(v0, [{"location": "A1", "qty": 2}, {"location": "B2", "qty": 3}])
        v1 = self.writer.write_aggregate(v0, 5, "A1, B2")

        v2 = get_version(self.writer.write_metadata(self.company_id, "TC-9", ReasonCode.DAMAGED, "dent"))
        self.assertEqual((v2.qty, v2.location, v2.multi_location), (5, "A1, B2", True))
        self.assertEqual(v2.supersedes_id, v1)

    def test_invalid_input_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.writer.write_metadata(self.company_id, "   ")
        with self.assertRaises(ValidationError):
            self.writer.write_metadata(self.company_id, "TC-9", "NOT_A_REASON")
        with self.assertRaises(ValidationError):
            self.writer.write_metadata(self.company_id, 123)
        with self.assertRaises(ValidationError):
            self.writer.write_metadata(self.company_id, "T" * 65)

    def test_aggregate_write_derives_multi_location_and_returns_new_id(self):
        v0 = self.writer.write_metadata(self.company_id, "TC-9", ReasonCode.FOUND, "n")
        replace_locations(v0, [{"location": "A1", "qty": 0}])

        v1 = self.writer.write_aggregate(v0, 0, "A1")
        self.assertNotEqual(v1, v0)

        entry = get_version(v1)
        self.assertEqual((entry.qty, entry.location, entry.multi_location), (0, "A1", False))
        self.assertEqual((entry.reason_code, entry.note), (ReasonCode.FOUND, "n"))
        self.assertEqual(entry.write_mode, WriteMode.AGGREGATE)
        self.assertEqual(resolve_current(self.company_id, "TC-9"), v1)

    def test_aggregate_write_must_match_rows(self):
        v0 = self.writer.write_metadata(self.company_id, "TC-9")
        replace_locations(v0, [{"location": "A1", "qty": 4}])

        with self.assertRaises(ValidationError):
            self.writer.write_aggregate(v0, 5, "A1")
        with self.assertRaises(ValidationError):
            self.writer.write_aggregate(v0, 4, "B2")
        self.assertEqual(resolve_current(self.company_id, "TC-9"), v0)

    def test_aggregate_write_needs_rows(self):
        v0 = self.writer.write_metadata(self.company_id, "TC-9")
        with self.assertRaises(ValidationError):
            self.writer.write_aggregate(v0, 0, None)
