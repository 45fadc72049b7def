from apps.tenancy.context import (
    set_active_scope,
    get_active_company_id,
    get_active_actor_id,
    require_active_company_id,
    clear_active_scope,
)

__all__ = [
    "set_active_scope",
    "get_active_company_id",
    "get_active_actor_id",
    "require_active_company_id",
    "clear_active_scope",
]
