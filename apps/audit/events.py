from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional


@dataclass(frozen=True)
class AuditEventSpec:
    """
    Central registry entry for an audit event.

    - name: canonical identifier stored in AuditEvent.event_name
    - required_keys: payload keys every emit must carry
    - max_payload_bytes_override: optional per-event payload limit override
    - system_only: emitted only from SYSTEM contexts (maintenance commands)
    """

    name: str
    required_keys: FrozenSet[str] = field(default_factory=frozenset)
    max_payload_bytes_override: Optional[int] = None
    system_only: bool = False
    notes: str = ""


def _spec(name: str, *required: str, **kwargs) -> AuditEventSpec:
    return AuditEventSpec(name=name, required_keys=frozenset(required), **kwargs)


# Every audit event name MUST be registered here.
EVENTS: Dict[str, AuditEventSpec] = {
    spec.name: spec
    for spec in (
        _spec(
            "tally.entry.versioned",
            "entry_id",
            "tally_card_number",
            "supersedes_id",
            "write_mode",
            "hashdiff",
            notes="A new TallyCardEntry version was inserted (metadata or aggregate write).",
        ),
        _spec(
            "tally.locations.replaced",
            "entry_id",
            "previous_entry_id",
            "count",
            "fingerprint",
            notes="Location breakdown replaced or moved to another version id.",
        ),
        _spec(
            "tally.adjustment.applied",
            "tally_card_number",
            "initial_entry_id",
            "final_entry_id",
            "qty",
            "location",
            "versions_written",
            "reconcile_attempts",
            notes="Adjustment saga committed; payload carries the final version id.",
        ),
        _spec(
            "tally.adjustment.failed",
            "tally_card_number",
            "step",
            "error",
            max_payload_bytes_override=16 * 1024,
            notes="Adjustment saga rolled back; emitted outside the saga transaction.",
        ),
        _spec(
            "tally.pointers.rebuilt",
            "total",
            "repaired",
            system_only=True,
            notes="rebuild_tally_pointers command executed.",
        ),
    )
}


def get_event_spec(event_name: str) -> Optional[AuditEventSpec]:
    return EVENTS.get(event_name)
