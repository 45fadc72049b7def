from __future__ import annotations

from django.core.management.base import BaseCommand
from django.db import transaction

from apps.audit.context import AuditContext
from apps.audit.hooks import emit_audit_event
from apps.tally.models import TallyCardEntry, TallyCardPointer
from apps.tally.resolver import resolve_by_scan


class Command(BaseCommand):
    help = "Rebuild TallyCardPointer from the append-only TallyCardEntry history (latest updated_at, then id)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--company-id",
            type=str,
            required=False,
            help="Optional company UUID to rebuild only one company.",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        company_id = options.get("company_id")

        keys = TallyCardEntry.objects.all()
        if company_id:
            keys = keys.filter(company_id=company_id)
        keys = keys.values_list("company_id", "tally_card_number").distinct().order_by(
            "company_id", "tally_card_number"
        )

        total = 0
        repaired = 0

        for c_id, number in keys.iterator():
            total += 1
            latest_id = resolve_by_scan(c_id, number)

            pointer = (
                TallyCardPointer.objects.select_for_update()
                .filter(company_id=c_id, tally_card_number=number)
                .first()
            )
            if pointer is not None and pointer.entry_id == latest_id:
                continue

            self.stdout.write(
                f"repair {c_id}/{number}: {pointer.entry_id if pointer else None} -> {latest_id}"
            )
            TallyCardPointer.objects.update_or_create(
                company_id=c_id,
                tally_card_number=number,
                defaults={"entry_id": latest_id},
            )
            repaired += 1

        emit_audit_event(
            event_name="tally.pointers.rebuilt",
            payload={"total": total, "repaired": repaired, "company_id": company_id},
            context=AuditContext(company_id=None, is_system=True),
        )

        self.stdout.write(
            self.style.SUCCESS(
                f"OK: rebuilt TallyCardPointer. total_cards={total} repaired={repaired}"
            )
        )
