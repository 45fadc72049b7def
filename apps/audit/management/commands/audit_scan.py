from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError


@dataclass(frozen=True)
class WriteRule:
    label: str
    patterns: tuple[re.Pattern, ...]
    allowlist: frozenset[str]


RULES = (
    WriteRule(
        label="AuditEvent (use emit_audit_event())",
        patterns=(
            re.compile(r"\bAuditEvent\.objects\.create\s*\("),
            re.compile(r"\bAuditEvent\.objects\.bulk_create\s*\("),
        ),
        allowlist=frozenset({"apps/audit/hooks.py"}),
    ),
    WriteRule(
        label="TallyCardEntryLocation (use apps.tally.ledger.replace_locations())",
        patterns=(
            re.compile(r"\bTallyCardEntryLocation\.objects\.create\s*\("),
            re.compile(r"\bTallyCardEntryLocation\.objects\.bulk_create\s*\("),
            re.compile(r"\bTallyCardEntryLocation\.objects\.filter\([^)]*\)\.delete\s*\("),
        ),
        allowlist=frozenset({"apps/tally/ledger.py"}),
    ),
)

EXCLUDE_PARTS = {
    "venv", ".venv", "env", ".tox", "build", "site-packages", ".git", "node_modules", "__pycache__", "migrations", "tests",
}


class Command(BaseCommand):
    help = "Fail-fast scan for forbidden direct writes to append-only / ledger-owned tables."

    def handle(self, *args, **options):
        base = Path(settings.BASE_DIR)

        hits: dict[str, set[str]] = {}
        for path in base.rglob("*.py"):
            if any(part in EXCLUDE_PARTS for part in path.parts):
                continue

            rel = path.relative_to(base).as_posix()
            text = path.read_text(encoding="utf-8", errors="ignore")
            for rule in RULES:
                if rel in rule.allowlist:
                    continue
                if any(rx.search(text) for rx in rule.patterns):
                    hits.setdefault(rule.label, set()).add(rel)

        if hits:
            lines = ["Forbidden direct writes detected:"]
            for label in sorted(hits):
                lines.append(f"{label}:")
                lines.extend(f"- {p}" for p in sorted(hits[label]))
            raise CommandError("\n".join(lines))

        self.stdout.write(self.style.SUCCESS("audit_scan OK - no forbidden direct writes found"))
