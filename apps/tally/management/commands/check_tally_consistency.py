from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from apps.tally.aggregation import aggregate
from apps.tally.ledger import locations_for, orphaned_locations
from apps.tally.models import TallyCardPointer
from apps.tally.resolver import resolve_by_scan


def check_pointer(pointer) -> list[str]:
    """Problems found on the current version a pointer names (empty list when consistent)."""
    entry = pointer.entry
    problems = []

    latest_id = resolve_by_scan(pointer.company_id, pointer.tally_card_number)
    if latest_id != entry.id:
        problems.append(f"pointer_drift: pointer={entry.id} scan={latest_id}")

    rows = locations_for(entry.id)
    if not rows:
        problems.append("no_locations: current version owns no location rows")
    else:
        agg = aggregate(rows)
        if (entry.qty, entry.location) != (agg.qty, agg.location):
            problems.append(
                f"aggregate_mismatch: stored=({entry.qty!r}, {entry.location!r}) "
                f"rows=({agg.qty!r}, {agg.location!r})"
            )
        if entry.multi_location != agg.multi_location:
            problems.append(
                f"multi_location_mismatch: stored={entry.multi_location} rows={len(rows)}"
            )

    orphans = orphaned_locations(pointer.company_id, pointer.tally_card_number)
    if orphans:
        owners = sorted({str(r.entry_id) for r in orphans})
        problems.append(f"orphaned_rows: {len(orphans)} rows under superseded versions {owners}")

    return problems


class Command(BaseCommand):
    help = "Report tally cards whose current version disagrees with its location rows."

    def add_arguments(self, parser):
        parser.add_argument(
            "--company-id",
            type=str,
            required=False,
            help="Optional company UUID to check only one company.",
        )
        parser.add_argument(
            "--fail-on-error",
            action="store_true",
            help="Exit non-zero when any inconsistency is found.",
        )

    def handle(self, *args, **options):
        company_id = options.get("company_id")

        qs = TallyCardPointer.objects.select_related("entry").order_by("company_id", "tally_card_number")
        if company_id:
            qs = qs.filter(company_id=company_id)

        checked = 0
        failing = 0
        for pointer in qs:
            checked += 1
            problems = check_pointer(pointer)
            if not problems:
                continue
            failing += 1
            for problem in problems:
                self.stdout.write(f"{pointer.company_id}/{pointer.tally_card_number}: {problem}")

        summary = f"checked={checked} inconsistent={failing}"
        if failing and options.get("fail_on_error"):
            raise CommandError(f"FAIL: tally consistency {summary}")

        style = self.style.WARNING if failing else self.style.SUCCESS
        self.stdout.write(style(f"{'WARN' if failing else 'OK'}: tally consistency {summary}"))
