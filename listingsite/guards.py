"""
listingsite/guards.py

Route guard chain for admin views.

Each protected navigation is evaluated against a GuardState in a fixed
order, and the first step that does not pass decides the outcome:

    1. loading          - auth, session, role or gating flag not settled
    2. unauthenticated  - redirect to login, preserving path + query
    3. impersonation    - never grants super-admin routes
    4. role             - staff routes need a staff role
    5. pilot gate       - gated routes need a comped organization
    6. allow

Loading comes first so an unresolved role is never mistaken for a denied
one (which would flash a redirect before the real answer arrives).

Pure Python logic - the FastAPI wiring lives in dependencies.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote

from listingsite.auth_context import AuthSnapshot
from listingsite.config import IS_DEV, SUPPORT_EMAIL
from listingsite.models import Organization
from listingsite.rbac import RoleState, super_admin_only_state, super_admin_portal_state


LOGIN_PATH = "/admin/login"
ADMIN_HOME_PATH = "/admin/listings"
MARKETING_PATH = "/marketing"
DEFAULT_FALLBACK_PATH = "/internal"

PRIVATE_BETA_VIEW = "private_beta"
PRIVATE_BETA_MESSAGE = (
    "AutoListing.io is currently in private beta. "
    "Your organization is not yet part of the pilot program."
)
PRIVATE_BETA_CONTACT = f"Contact us at {SUPPORT_EMAIL}"

# Failures that mean "could not verify yet" rather than "not allowed"
TRANSIENT_AUTH_MARKERS = ("401", "403", "Unauthorized")


# ============================================================================
# Types
# ============================================================================

class GuardOutcome(str, Enum):
    LOADING = "loading"
    REDIRECT = "redirect"
    DENY = "deny"
    ALLOW = "allow"


class RouteAccess(str, Enum):
    ADMIN = "admin"  # any signed-in user
    SUPER_ADMIN_PORTAL = "super_admin_portal"  # super admins and developers
    SUPER_ADMIN_ONLY = "super_admin_only"  # super admins alone


@dataclass(frozen=True)
class RouteRequirement:
    access: RouteAccess = RouteAccess.ADMIN
    fallback_path: str = DEFAULT_FALLBACK_PATH
    pilot_gated: bool = False

    @property
    def staff_only(self) -> bool:
        return self.access is not RouteAccess.ADMIN


@dataclass(frozen=True)
class GuardState:
    """
    Everything the chain consults for one navigation.

    `organization` is the single resolved organization for the navigation,
    None when there is none. `pilot_mode` is None until the flag is read.
    """
    auth: AuthSnapshot
    organization: Optional[Organization] = None
    organization_loading: bool = False
    pilot_mode: Optional[bool] = False
    role_check_error: Optional[str] = None

    @property
    def role_error(self) -> Optional[str]:
        return self.role_check_error or self.auth.role_error


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    location: Optional[str] = None
    view: Optional[str] = None
    reason: str = ""
    message: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is GuardOutcome.ALLOW


def _loading(reason: str) -> GuardDecision:
    return GuardDecision(GuardOutcome.LOADING, reason=reason)


def _redirect(location: str, reason: str) -> GuardDecision:
    return GuardDecision(GuardOutcome.REDIRECT, location=location, reason=reason)


# ============================================================================
# Helpers
# ============================================================================

def login_redirect(path: str, query: str = "") -> str:
    """Login URL carrying the intended destination as an encoded `returnUrl`."""
    if query and not query.startswith("?"):
        query = "?" + query
    return_url = quote(f"{path}{query}", safe="-_.!~*'()")
    return f"{LOGIN_PATH}?returnUrl={return_url}"


def is_transient_auth_error(error: Optional[str]) -> bool:
    return bool(error) and any(marker in error for marker in TRANSIENT_AUTH_MARKERS)


def _role_state(access: RouteAccess, role: Optional[str]) -> RoleState:
    if access is RouteAccess.SUPER_ADMIN_ONLY:
        return super_admin_only_state(role)
    return super_admin_portal_state(role)


# ============================================================================
# Chain
# ============================================================================

def evaluate_guard(
    requirement: RouteRequirement,
    state: GuardState,
    path: str,
    query: str = "",
) -> GuardDecision:
    """
    Evaluate the guard chain for one navigation.

    Args:
        requirement: What the route demands
        state: Snapshot of auth, organization and gating flag
        path: Requested path (used for the login return URL)
        query: Requested query string, with or without leading '?'

    Returns:
        GuardDecision; the first failing step wins
    """
    decision = _evaluate(requirement, state, path, query)
    if IS_DEV:
        print(f"[GUARD] {path} access={requirement.access.value} -> "
              f"{decision.outcome.value} {decision.location or ''} ({decision.reason})")
    return decision


def _evaluate(requirement: RouteRequirement, state: GuardState, path: str, query: str) -> GuardDecision:
    auth = state.auth

    # 1. Loading
    if auth.settling:
        return _loading("auth not settled")
    if requirement.pilot_gated and (state.organization_loading or state.pilot_mode is None):
        return _loading("organization or pilot flag not settled")

    # 2. Unauthenticated
    if not auth.authenticated:
        return _redirect(login_redirect(path, query), "unauthenticated")

    # 3. Impersonation
    if requirement.staff_only and auth.is_impersonating:
        return _redirect(ADMIN_HOME_PATH, "impersonation does not grant staff routes")

    # 4. Role
    if requirement.staff_only:
        if state.role_error:
            if is_transient_auth_error(state.role_error):
                return _redirect(ADMIN_HOME_PATH, "role not verifiable")
            return _redirect(requirement.fallback_path, "role check failed")
        role_state = _role_state(requirement.access, auth.role)
        if role_state is RoleState.UNKNOWN:
            return _loading("role unknown")
        if role_state is RoleState.DENIED:
            return _redirect(requirement.fallback_path, "insufficient role")

    # 5. Pilot gate
    if requirement.pilot_gated and state.pilot_mode:
        if not (auth.is_super_admin or auth.is_impersonating):
            if state.organization is None:
                return _redirect(MARKETING_PATH, "no organization")
            if not state.organization.is_comped:
                return GuardDecision(
                    GuardOutcome.DENY,
                    view=PRIVATE_BETA_VIEW,
                    reason="organization not in pilot",
                    message=PRIVATE_BETA_MESSAGE,
                )

    # 6. Authorized
    return GuardDecision(GuardOutcome.ALLOW, reason="authorized")
