from __future__ import annotations

from uuid import UUID

from django.utils.deprecation import MiddlewareMixin

from apps.tenancy.context import set_active_scope

COMPANY_HEADER = "HTTP_X_COMPANY_ID"
ACTOR_HEADER = "HTTP_X_ACTOR_ID"


def _parse_uuid(raw):
    if not raw:
        return None
    try:
        return UUID(str(raw).strip())
    except ValueError:
        return None


class TenantContextMiddleware(MiddlewareMixin):
    """
    Hard reset of tenancy context per request, then bind the company scope
    carried by the X-Company-Id header.

    Fail-closed: a malformed header leaves the scope unset, so scoped views
    answer 403 instead of guessing a company.
    """

    def process_request(self, request):
        set_active_scope(None)

        company_id = _parse_uuid(request.META.get(COMPANY_HEADER))
        if company_id is None:
            return None

        set_active_scope(company_id, actor_id=_parse_uuid(request.META.get(ACTOR_HEADER)))
        return None

    def process_response(self, request, response):
        set_active_scope(None)
        return response
