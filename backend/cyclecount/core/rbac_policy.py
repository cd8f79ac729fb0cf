"""
RBAC Policy

Maps roles to cycle count permissions and turns a role into the capability
oracle the engine consumes: ``Callable[[Permission], bool]``.

Roles:
- owner: full access
- manager: create, count, approve, cancel
- staff: view and enter counts
"""

from enum import Enum
from typing import Callable, Dict, Set


class Permission(str, Enum):
    """Available permissions in the system."""

    CYCLE_COUNT_VIEW = "cycle_count:view"
    CYCLE_COUNT_CREATE = "cycle_count:create"
    CYCLE_COUNT_COUNT = "cycle_count:count"
    CYCLE_COUNT_APPROVE = "cycle_count:approve"
    CYCLE_COUNT_CANCEL = "cycle_count:cancel"

    ADMIN_FULL = "admin:full"


CapabilityOracle = Callable[[Permission], bool]


# Role to permissions mapping
ROLE_PERMISSIONS: Dict[str, Set[Permission]] = {
    "owner": {Permission.ADMIN_FULL},
    "manager": {
        Permission.CYCLE_COUNT_VIEW,
        Permission.CYCLE_COUNT_CREATE,
        Permission.CYCLE_COUNT_COUNT,
        Permission.CYCLE_COUNT_APPROVE,
        Permission.CYCLE_COUNT_CANCEL,
    },
    "staff": {
        Permission.CYCLE_COUNT_VIEW,
        Permission.CYCLE_COUNT_COUNT,
    },
}


class RBACPolicy:
    """
    RBAC Policy enforcement.

    Validates role permissions against requested actions.
    """

    @staticmethod
    def get_role_permissions(role: str) -> Set[Permission]:
        """Get permissions for a role."""
        return ROLE_PERMISSIONS.get(role, set())

    @staticmethod
    def has_permission(user_role: str, permission: Permission) -> bool:
        """Check if role has specific permission."""
        granted = RBACPolicy.get_role_permissions(user_role)
        if Permission.ADMIN_FULL in granted:
            return True
        return permission in granted

    @staticmethod
    def for_role(user_role: str) -> CapabilityOracle:
        """Bind a role into a capability oracle."""
        return lambda permission: RBACPolicy.has_permission(user_role, permission)


def allow_all(permission: Permission) -> bool:
    """Oracle that grants everything; used for internal callers and scripts."""
    return True
