"""
listingsite/rbac.py

Role resolution and platform-staff permissions.

Roles are platform-wide (from `user_roles`), not per-organization. A user's
effective role is the highest one they hold.

Pure Python logic - no FastAPI imports, no database access.
"""

from enum import Enum
from typing import FrozenSet, Iterable, Optional


# ============================================================================
# Role Definitions
# ============================================================================

class Role:
    """Role constants for RBAC."""
    SUPER_ADMIN = "super_admin"
    DEVELOPER = "developer"
    ADMIN = "admin"
    USER = "user"


ROLE_PRIORITY = (Role.SUPER_ADMIN, Role.DEVELOPER, Role.ADMIN, Role.USER)

SUPER_ADMIN_PORTAL_ROLES = frozenset({Role.SUPER_ADMIN, Role.DEVELOPER})


class RoleState(str, Enum):
    """
    Outcome of a role check.

    UNKNOWN means the role has not been resolved yet and must never be
    treated as DENIED, otherwise guards redirect before the answer arrives.
    """
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


def highest_role(roles: Iterable[str]) -> str:
    """Return the highest-priority role held, or `user` when none are recognised."""
    held = set(roles or [])
    for role in ROLE_PRIORITY:
        if role in held:
            return role
    return Role.USER


def role_state(role: Optional[str], allowed: Iterable[str]) -> RoleState:
    """Tri-state check of a possibly-unresolved role against an allowed set."""
    if role is None:
        return RoleState.UNKNOWN
    return RoleState.GRANTED if role in set(allowed) else RoleState.DENIED


def super_admin_portal_state(role: Optional[str]) -> RoleState:
    return role_state(role, SUPER_ADMIN_PORTAL_ROLES)


def super_admin_only_state(role: Optional[str]) -> RoleState:
    return role_state(role, {Role.SUPER_ADMIN})


# ============================================================================
# Staff Permissions
# ============================================================================

class Permission:
    VIEW_DASHBOARDS = "canViewDashboards"
    VIEW_AUDIT_LOGS = "canViewAuditLogs"
    IMPERSONATE_USERS = "canImpersonateUsers"
    PROCESS_REFUNDS = "canProcessRefunds"
    GRANT_CREDITS = "canGrantCredits"
    GRANT_CREDITS_OVER_100 = "canGrantCreditsOver100"
    MANAGE_DISCOUNT_CODES = "canManageDiscountCodes"
    MANAGE_FEATURE_FLAGS = "canManageFeatureFlags"
    MANAGE_PRODUCTION_FLAGS = "canManageProductionFlags"
    SUSPEND_ORGANIZATIONS = "canSuspendOrganizations"
    DELETE_ORGANIZATIONS = "canDeleteOrganizations"
    ACCESS_BILLING = "canAccessBilling"
    MANAGE_SUPPORT_TICKETS = "canManageSupportTickets"
    EXPORT_GDPR_DATA = "canExportGDPRData"
    EXTEND_TRIAL = "canExtendTrial"


ROLE_PERMISSIONS: dict[str, FrozenSet[str]] = {
    Role.SUPER_ADMIN: frozenset({
        Permission.VIEW_DASHBOARDS,
        Permission.VIEW_AUDIT_LOGS,
        Permission.IMPERSONATE_USERS,
        Permission.PROCESS_REFUNDS,
        Permission.GRANT_CREDITS,
        Permission.GRANT_CREDITS_OVER_100,
        Permission.MANAGE_DISCOUNT_CODES,
        Permission.MANAGE_FEATURE_FLAGS,
        Permission.MANAGE_PRODUCTION_FLAGS,
        Permission.SUSPEND_ORGANIZATIONS,
        Permission.DELETE_ORGANIZATIONS,
        Permission.ACCESS_BILLING,
        Permission.MANAGE_SUPPORT_TICKETS,
        Permission.EXPORT_GDPR_DATA,
        Permission.EXTEND_TRIAL,
    }),
    # Developers get a read-mostly subset (no money, no destructive actions)
    Role.DEVELOPER: frozenset({
        Permission.VIEW_DASHBOARDS,
        Permission.VIEW_AUDIT_LOGS,
        Permission.GRANT_CREDITS,
        Permission.MANAGE_FEATURE_FLAGS,
        Permission.MANAGE_SUPPORT_TICKETS,
    }),
}


def permissions_for(role: Optional[str]) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(role: Optional[str], permission: str) -> bool:
    return permission in permissions_for(role)


def is_staff(role: Optional[str]) -> bool:
    return role in SUPER_ADMIN_PORTAL_ROLES
