from enum import Enum
from typing import Set


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    CASHIER = "CASHIER"
    CUSTOMER_MEMBER = "CUSTOMER_MEMBER"


class Permissions(str, Enum):
    # Orders
    ORDERS_READ = "order:read"
    ORDERS_WRITE = "order:write"

    # Payments
    PAYMENTS_READ = "payment:read"
    PAYMENTS_WRITE = "payment:write"

    # Shifts
    SHIFTS_READ = "shift:read"
    SHIFTS_WRITE = "shift:write"


STAFF_PERMISSIONS: Set[str] = {p.value for p in Permissions}

# Members only use the public ordering page; POS and kitchen are staff-only
ROLE_PERMISSIONS: dict[Role, Set[str]] = {
    Role.SUPER_ADMIN: STAFF_PERMISSIONS,
    Role.COMPANY_ADMIN: STAFF_PERMISSIONS,
    Role.CASHIER: STAFF_PERMISSIONS,
    Role.CUSTOMER_MEMBER: set(),
}


class PermissionService:
    @staticmethod
    def get_role_permissions(role: str | None) -> Set[str]:
        """Get all permissions granted to a role; unknown roles get none."""
        try:
            return ROLE_PERMISSIONS[Role(role)]
        except ValueError:
            return set()

    @staticmethod
    def has_permission(role: str | None, required_permission: str) -> bool:
        return required_permission in PermissionService.get_role_permissions(role)
