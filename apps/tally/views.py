# apps/tally/views.py
from __future__ import annotations

import functools
import json
import logging
from uuid import UUID

from django.core.exceptions import PermissionDenied, ValidationError
from django.http import JsonResponse
from django.views.decorators.cache import never_cache
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.tally.aggregation import coerce_qty, is_multi_location, locations_from_aggregate
from apps.tally.errors import ResolveError, StaleVersionError, TallyError
from apps.tally.ledger import current_locations, locations_for, replace_locations
from apps.tally.resolver import get_version, resolve_current
from apps.tally.saga import apply_adjustment
from apps.tally.writer import EntryWriter
from apps.tenancy.context import get_active_actor_id, require_active_company_id

logger = logging.getLogger(__name__)


def _error(status: int, message: str, *, step=None, version_id=None) -> JsonResponse:
    return JsonResponse(
        {"error": {"message": message, "step": step, "version_id": version_id}},
        status=status,
    )


def json_api(view):
    """
    JSON error mapping shared by every tally endpoint.

    ValidationError -> 400, PermissionDenied -> 403, ResolveError -> 404,
    StaleVersionError -> 409, any other TallyError -> 500.
    """

    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except ValidationError as exc:
            return _error(400, "; ".join(exc.messages))
        except PermissionDenied as exc:
            return _error(403, str(exc) or "forbidden")
        except ResolveError as exc:
            return JsonResponse({"error": exc.as_dict()}, status=404)
        except StaleVersionError as exc:
            return JsonResponse({"error": exc.as_dict()}, status=409)
        except TallyError as exc:
            logger.error("%s %s failed at %s: %s", request.method, request.path, exc.step, exc)
            return JsonResponse({"error": exc.as_dict()}, status=500)

    return wrapper


def _body(request) -> dict:
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("request body must be valid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _body_uuid(data: dict, key: str):
    raw = data.get(key)
    if raw in (None, ""):
        return None
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise ValidationError(f"{key} must be a UUID") from exc


def _scoped_version(version_id, company_id):
    # Another company's version answers exactly like an unknown one.
    entry = get_version(version_id)
    if entry.company_id != company_id:
        raise ResolveError(f"unknown tally card version {version_id}", version_id=version_id)
    return entry


def _entry_dict(entry) -> dict:
    return {
        "id": str(entry.id),
        "tally_card_number": entry.tally_card_number,
        "reason_code": entry.reason_code,
        "note": entry.note,
        "qty": entry.qty,
        "location": entry.location,
        "multi_location": entry.multi_location,
        "write_mode": entry.write_mode,
        "supersedes_id": str(entry.supersedes_id) if entry.supersedes_id else None,
        "updated_at": entry.updated_at.isoformat(),
    }


def _location_dicts(rows) -> list[dict]:
    return [{"location": r.location, "qty": r.qty, "pos": r.pos} for r in rows]


@never_cache
@csrf_exempt
@require_http_methods(["POST"])
@json_api
def entries(request):
    """Create a tally card, or write a metadata version of an existing one."""
    company_id = require_active_company_id()
    data = _body(request)

    version_id = EntryWriter().write_metadata(
        company_id,
        data.get("tally_card_number"),
        data.get("reason_code"),
        data.get("note"),
        actor_id=get_active_actor_id(),
    )
    return JsonResponse({"id": str(version_id)}, status=201)


@never_cache
@csrf_exempt
@require_http_methods(["GET", "PUT"])
@json_api
def entry_locations(request, version_id):
    company_id = require_active_company_id()
    entry = _scoped_version(version_id, company_id)

    if request.method == "GET":
        return JsonResponse({"locations": _location_dicts(current_locations(entry.id))})

    data = _body(request)
    previous_id = _body_uuid(data, "previous_version_id")
    if previous_id:
        previous_id = _scoped_version(previous_id, company_id).id

    persisted = replace_locations(
        entry.id,
        data.get("locations"),
        previous_version_id=previous_id,
        actor_id=get_active_actor_id(),
    )
    return JsonResponse({"locations": _location_dicts(persisted)})


@never_cache
@csrf_exempt
@require_http_methods(["POST"])
@json_api
def entry_aggregate(request, version_id):
    company_id = require_active_company_id()
    entry = _scoped_version(version_id, company_id)
    data = _body(request)

    multi_location = data.get("multi_location")
    if multi_location is not None:
        if not isinstance(multi_location, bool):
            raise ValidationError("multi_location must be a boolean")
        if multi_location != is_multi_location(locations_for(entry.id)):
            raise ValidationError("multi_location contradicts the location rows of this version")

    new_id = EntryWriter().write_aggregate(
        entry.id,
        coerce_qty(data.get("qty")),
        data.get("location"),
        actor_id=get_active_actor_id(),
    )
    return JsonResponse({"id": str(new_id)}, status=201)


@never_cache
@csrf_exempt
@require_http_methods(["POST"])
@json_api
def adjustments(request, tally_card_number):
    """Apply a full adjustment (metadata plus location breakdown) in one call."""
    company_id = require_active_company_id()
    data = _body(request)

    version_hint = _body_uuid(data, "version_id")
    if version_hint:
        _scoped_version(version_hint, company_id)

    result = apply_adjustment(
        company_id,
        tally_card_number,
        rows=data.get("locations"),
        reason_code=data.get("reason_code"),
        note=data.get("note"),
        actor_id=get_active_actor_id(),
        version_hint=version_hint,
    )
    return JsonResponse(result.as_dict(), status=201)


@never_cache
@require_http_methods(["GET"])
@json_api
def tally_card(request, tally_card_number):
    company_id = require_active_company_id()

    current_id = resolve_current(company_id, tally_card_number)
    if current_id is None:
        raise ResolveError(f"unknown tally card {tally_card_number}")

    entry = get_version(current_id)
    rows = _location_dicts(locations_for(entry.id))
    seeded = False
    if not rows and entry.location:
        # Versions written before breakdowns existed: offer one built from the summary.
        rows = [
            {"location": r.location, "qty": r.qty, "pos": r.pos}
            for r in locations_from_aggregate(entry.location, entry.qty)
        ]
        seeded = bool(rows)

    payload = _entry_dict(entry)
    payload["locations"] = rows
    payload["locations_seeded"] = seeded
    return JsonResponse(payload)
