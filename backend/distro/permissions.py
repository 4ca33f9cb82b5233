"""
Role permissions

Centralized permission codes and role mappings. Roles are fixed (stored as a
plain string on the user); each role maps to the set of actions it may take.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Drivers and sales reps create and deliver orders but never delete them
- Admin has all permissions
"""

from .models.users import ROLE_ADMIN, ROLE_SECRETARY, ROLE_MANAGER, ROLE_SALES, ROLE_DRIVER


CREATE_ORDER = "CREATE_ORDER"
EDIT_ORDER = "EDIT_ORDER"
VIEW_ORDERS = "VIEW_ORDERS"
DELETE_ORDER = "DELETE_ORDER"
CHANGE_ORDER_STATUS = "CHANGE_ORDER_STATUS"
FINALIZE_ORDER = "FINALIZE_ORDER"
EDIT_BALANCES = "EDIT_BALANCES"
VIEW_COLLECTIONS = "VIEW_COLLECTIONS"
VERIFY_COLLECTIONS = "VERIFY_COLLECTIONS"
MANAGE_ALLOCATIONS = "MANAGE_ALLOCATIONS"
VIEW_ALLOCATIONS = "VIEW_ALLOCATIONS"
MANAGE_CATALOG = "MANAGE_CATALOG"
VIEW_CATALOG = "VIEW_CATALOG"


ALL_PERMISSIONS = frozenset({
    CREATE_ORDER,
    EDIT_ORDER,
    VIEW_ORDERS,
    DELETE_ORDER,
    CHANGE_ORDER_STATUS,
    FINALIZE_ORDER,
    EDIT_BALANCES,
    VIEW_COLLECTIONS,
    VERIFY_COLLECTIONS,
    MANAGE_ALLOCATIONS,
    VIEW_ALLOCATIONS,
    MANAGE_CATALOG,
    VIEW_CATALOG,
})

_FIELD_PERMISSIONS = frozenset({
    CREATE_ORDER,
    EDIT_ORDER,
    VIEW_ORDERS,
    CHANGE_ORDER_STATUS,
    FINALIZE_ORDER,
    EDIT_BALANCES,
    VIEW_COLLECTIONS,
    VIEW_ALLOCATIONS,
    VIEW_CATALOG,
})

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    ROLE_MANAGER: ALL_PERMISSIONS,
    ROLE_SECRETARY: _FIELD_PERMISSIONS | {DELETE_ORDER, VERIFY_COLLECTIONS, MANAGE_CATALOG},
    ROLE_SALES: _FIELD_PERMISSIONS,
    ROLE_DRIVER: _FIELD_PERMISSIONS,
}


def role_has_permission(role: str, permission_code: str) -> bool:
    return permission_code in DEFAULT_ROLE_PERMISSIONS.get(role, frozenset())
