"""CRUD 操作模块"""
from .entitlement import (
    get_entitlement,
    grants_access,
    has_active_entitlement,
    list_entitlements,
    lock_entitlement,
    user_has_other_access,
)
from .user import (
    create as create_user,
)
from .user import (
    find_by_external_id as find_user_by_external_id,
)
from .user import (
    set_premium as set_user_premium,
)

__all__ = [
    "get_entitlement",
    "grants_access",
    "has_active_entitlement",
    "list_entitlements",
    "lock_entitlement",
    "user_has_other_access",
    "create_user",
    "find_user_by_external_id",
    "set_user_premium",
]
