from __future__ import annotations

import threading
from datetime import datetime, timedelta

from django.utils import timezone

_lock = threading.Lock()
_last: datetime | None = None


def now() -> datetime:
    """
    Strictly increasing write timestamp for this process.

    Two versions written within the clock's resolution would otherwise share
    updated_at and fall back to the id tie-break.
    """
    global _last
    with _lock:
        current = timezone.now()
        if _last is not None and current <= _last:
            current = _last + timedelta(microseconds=1)
        _last = current
        return current
