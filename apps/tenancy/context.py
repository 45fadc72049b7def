import contextvars

from django.core.exceptions import PermissionDenied

active_company_id = contextvars.ContextVar("active_company_id", default=None)
active_actor_id = contextvars.ContextVar("active_actor_id", default=None)


def set_active_scope(company_id, actor_id=None):
    active_company_id.set(company_id)
    active_actor_id.set(actor_id)


def get_active_company_id():
    return active_company_id.get()


def get_active_actor_id():
    return active_actor_id.get()


def require_active_company_id():
    company_id = active_company_id.get()
    if not company_id:
        raise PermissionDenied("active company scope is required for tally card access")
    return company_id


def clear_active_scope():
    set_active_scope(None)
