"""
Pure aggregation over location rows (no I/O).

A "row" is anything exposing location/qty/pos either as attributes
(TallyCardEntryLocation, LocationInput) or as mapping keys.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from django.core.exceptions import ValidationError

from .constants import (
    EMPTY_LOCATIONS_MESSAGE,
    LOCATION_MAX_LENGTH,
    LOCATION_SUMMARY_SEPARATOR,
    QTY_MAX,
    QTY_MIN,
)


@dataclass(frozen=True)
class LocationInput:
    location: str
    qty: int
    pos: int


@dataclass(frozen=True)
class Aggregate:
    qty: int | None
    location: str | None
    multi_location: bool


def _get(row: Any, name: str, default=None):
    if isinstance(row, Mapping):
        return row.get(name, default)
    return getattr(row, name, default)


def total_qty(rows: Iterable[Any]) -> int:
    return sum(int(_get(r, "qty") or 0) for r in rows)


def location_summary(rows: Iterable[Any]) -> str | None:
    seen: dict[str, None] = {}
    for r in rows:
        name = (_get(r, "location") or "").strip()
        if name:
            seen.setdefault(name, None)
    if not seen:
        return None
    return LOCATION_SUMMARY_SEPARATOR.join(seen)


def is_multi_location(rows: Sequence[Any]) -> bool:
    return len(rows) > 1


def aggregate(rows: Iterable[Any]) -> Aggregate:
    rows = list(rows)
    if not rows:
        return Aggregate(qty=None, location=None, multi_location=False)
    return Aggregate(
        qty=total_qty(rows),
        location=location_summary(rows),
        multi_location=is_multi_location(rows),
    )


def _in_range(qty: int) -> int:
    if not QTY_MIN <= qty <= QTY_MAX:
        raise ValidationError(f"qty out of range ({QTY_MIN}..{QTY_MAX})")
    return qty


def coerce_qty(raw) -> int:
    """
    Integer quantity; zero and negatives are legal.
    Rejects missing, non-finite, fractional and out-of-range values.
    """
    if raw is None or isinstance(raw, bool):
        raise ValidationError("qty is required and must be an integer")

    if isinstance(raw, int):
        return _in_range(raw)

    if isinstance(raw, float):
        if not math.isfinite(raw):
            raise ValidationError("qty must be finite")
        if not raw.is_integer():
            raise ValidationError("qty must be a whole number")
        return _in_range(int(raw))

    try:
        d = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"qty must be an integer (got {raw!r})") from exc

    if not d.is_finite():
        raise ValidationError("qty must be finite")
    if d != d.to_integral_value():
        raise ValidationError("qty must be a whole number")
    return _in_range(int(d))


def _coerce_pos(raw, fallback: int) -> int:
    if raw is None or raw == "":
        return fallback
    try:
        pos = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"pos must be an integer (got {raw!r})") from exc
    if pos < 1:
        raise ValidationError("pos must be >= 1")
    return pos


def normalize_locations(raw_rows: Iterable[Any] | None) -> list[LocationInput]:
    """
    Validate and canonicalize a desired location breakdown.

    - names are trimmed; a blank name is rejected
    - rows are ordered by (pos, location), missing pos taking the input index
    - positions are renumbered 1..N
    - an empty breakdown is rejected
    """
    if raw_rows is None:
        raise ValidationError(EMPTY_LOCATIONS_MESSAGE)
    if isinstance(raw_rows, (str, bytes, Mapping)) or not isinstance(raw_rows, Iterable):
        raise ValidationError("locations must be a list of {location, qty, pos} rows")

    staged: list[tuple[int, str, int]] = []
    for idx, raw in enumerate(raw_rows, start=1):
        name = _get(raw, "location")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise ValidationError(f"location name is required (row {idx})")
        if len(name) > LOCATION_MAX_LENGTH:
            raise ValidationError(f"location name too long (row {idx}, max {LOCATION_MAX_LENGTH})")

        staged.append((_coerce_pos(_get(raw, "pos"), idx), name, coerce_qty(_get(raw, "qty"))))

    if not staged:
        raise ValidationError(EMPTY_LOCATIONS_MESSAGE)

    try:
        _in_range(sum(qty for _, _, qty in staged))
    except ValidationError as exc:
        raise ValidationError("total qty of all locations out of range") from exc

    staged.sort(key=lambda t: (t[0], t[1]))
    return [LocationInput(location=name, qty=qty, pos=i) for i, (_, name, qty) in enumerate(staged, start=1)]


def fingerprint_locations(rows: Iterable[Any]) -> str:
    triples = [((_get(r, "location") or "").strip(), int(_get(r, "qty") or 0), _get(r, "pos")) for r in rows]
    triples.sort(key=lambda t: (t[2] if t[2] is not None else 0, t[0]))
    return json.dumps([list(t) for t in triples], separators=(",", ":"))


def locations_from_aggregate(location_text, qty) -> list[LocationInput]:
    """
    Seed a breakdown from a legacy aggregate string ("A1, B2").
    The whole quantity lands on the first location, zero on the rest.
    """
    if not isinstance(location_text, str):
        return []

    parts = [p.strip() for p in location_text.split(",") if p.strip()]
    if not parts:
        return []

    try:
        primary = coerce_qty(qty)
    except ValidationError:
        primary = 0

    return [
        LocationInput(location=name, qty=primary if i == 1 else 0, pos=i)
        for i, name in enumerate(parts, start=1)
    ]
