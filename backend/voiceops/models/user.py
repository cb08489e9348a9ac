"""User roles and tenant resolution."""

from enum import Enum
from typing import Any


class UserRole(str, Enum):
    """Platform roles. One role per user."""

    ADMIN = "admin"
    ENGINEER = "engineer"
    CLIENT = "client"
    TELECALLER = "telecaller"  # sub-user of a client
    MONITORING = "monitoring"  # sub-user of a client
    LEAD_MANAGER = "lead_manager"  # sub-user of a client


SUB_USER_ROLES = frozenset({UserRole.TELECALLER, UserRole.MONITORING, UserRole.LEAD_MANAGER})
INTERNAL_ROLES = frozenset({UserRole.ADMIN, UserRole.ENGINEER})


def role_of(user: dict[str, Any] | None) -> UserRole | None:
    """Role of an authenticated user dict, or None."""
    if not user:
        return None
    try:
        return UserRole(user.get("role"))
    except ValueError:
        return None


def tenant_id_for(user: dict[str, Any]) -> str | None:
    """
    Client id whose data the user is limited to.

    Clients see their own tenant, sub-users see their parent client's tenant.
    Admins and engineers are not tenant-scoped and get None.
    """
    role = role_of(user)
    if role == UserRole.CLIENT:
        return user["id"]
    if role in SUB_USER_ROLES:
        return user.get("client_id") or user["id"]
    return None


def can_access_tenant(user: dict[str, Any], resource_client_id: str | None) -> bool:
    """Whether the user may read data owned by ``resource_client_id``."""
    tenant_id = tenant_id_for(user)
    if tenant_id is None:
        return role_of(user) in INTERNAL_ROLES
    return resource_client_id == tenant_id
