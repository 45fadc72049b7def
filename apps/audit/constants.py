from __future__ import annotations

# Event names and per-event payload contracts live in apps.audit.events.

MAX_PAYLOAD_BYTES: int = 8 * 1024  # 8 KB (default)

# Free-text payload values (error messages) are cut to this length.
MAX_STRING_CHARS: int = 2000
