"""
listingsite/dependencies.py

Reusable FastAPI dependencies: the per-request organization context, the
auth snapshot, and the route guard factory that turns guard decisions into
HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from listingsite.auth_context import AuthSnapshot, build_auth_snapshot
from listingsite.config import IS_DEV
from listingsite.content import ContentService
from listingsite.features import FeatureFlagKey, FeatureFlagService
from listingsite.guards import (
    PRIVATE_BETA_CONTACT,
    GuardDecision,
    GuardOutcome,
    GuardState,
    RouteRequirement,
    evaluate_guard,
)
from listingsite.models import Organization
from listingsite.tenant import (
    OrganizationStore,
    SiteResolution,
    TenantLookupError,
    resolve_admin_organization,
    resolve_site,
)

bearer = HTTPBearer(auto_error=False)

SELECTED_ORG_HEADER = "X-Organization-Id"
SELECTED_ORG_COOKIE = "selected_organization_id"


# ---------------------------------------------------------
# Guard exceptions
# ---------------------------------------------------------
class GuardRedirect(HTTPException):
    """Redirect raised from a dependency, carrying the Location header."""

    def __init__(self, location: str, reason: str = ""):
        super().__init__(status_code=307, detail=reason or "Redirect", headers={"Location": location})
        self.location = location


class GuardLoading(HTTPException):
    """Access cannot be decided yet; the client should retry shortly."""

    def __init__(self, reason: str = ""):
        super().__init__(
            status_code=503,
            detail=f"Verifying access...{f' ({reason})' if IS_DEV and reason else ''}",
            headers={"Retry-After": "1"},
        )


class GuardDenied(HTTPException):
    """Terminal denial view (e.g. private beta), not a redirect."""

    def __init__(self, decision: GuardDecision):
        super().__init__(
            status_code=403,
            detail={
                "view": decision.view,
                "message": decision.message,
                "contact": PRIVATE_BETA_CONTACT,
            },
        )


# ---------------------------------------------------------
# Services (one per process)
# ---------------------------------------------------------
_flag_service: Optional[FeatureFlagService] = None
_content_service: Optional[ContentService] = None


def get_store() -> OrganizationStore:
    return OrganizationStore()


def get_flag_service() -> FeatureFlagService:
    global _flag_service
    if _flag_service is None:
        _flag_service = FeatureFlagService()
    return _flag_service


def get_content_service() -> ContentService:
    global _content_service
    if _content_service is None:
        _content_service = ContentService()
    return _content_service


# ---------------------------------------------------------
# Request context
# ---------------------------------------------------------
def request_hostname(request: Request) -> str:
    return request.headers.get("host") or (request.url.hostname or "")


def get_site_resolution(
    request: Request,
    slug: Optional[str] = None,
    store: OrganizationStore = Depends(get_store),
) -> SiteResolution:
    """
    Resolve the organization for this request exactly once.

    Raises:
        HTTPException(503): If the organization store cannot be read
    """
    try:
        return resolve_site(store, request_hostname(request), slug=slug)
    except TenantLookupError:
        raise HTTPException(status_code=503, detail="Organization lookup unavailable")


def get_auth_snapshot(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> AuthSnapshot:
    token = credentials.credentials if credentials else request.cookies.get("access_token")
    return build_auth_snapshot(token)


@dataclass(frozen=True)
class AdminRouteContext:
    auth: AuthSnapshot
    organization: Optional[Organization]
    decision: GuardDecision


def require_route(requirement: RouteRequirement) -> Callable:
    """
    FastAPI dependency factory enforcing the guard chain for a route.

    Usage in routes:
        @app.get("/internal")
        def portal(ctx: AdminRouteContext = Depends(require_route(SUPER_ADMIN_PORTAL))):
            ...

    Raises:
        GuardLoading (503): Auth or gating state not settled
        GuardRedirect (307): Login, fallback or marketing redirect
        GuardDenied (403): Private beta notice
    """
    def _guard(
        request: Request,
        auth: AuthSnapshot = Depends(get_auth_snapshot),
        flags: FeatureFlagService = Depends(get_flag_service),
        store: OrganizationStore = Depends(get_store),
    ) -> AdminRouteContext:
        organization = None
        if auth.authenticated and not auth.settling:
            preferred = request.headers.get(SELECTED_ORG_HEADER) or request.cookies.get(SELECTED_ORG_COOKIE)
            try:
                organization = resolve_admin_organization(store, auth.user_id, auth.impersonation, preferred)
            except TenantLookupError:
                raise HTTPException(status_code=503, detail="Organization lookup unavailable")

        pilot_mode = flags.is_feature_enabled(FeatureFlagKey.PILOT_MODE) if requirement.pilot_gated else False
        state = GuardState(auth=auth, organization=organization, pilot_mode=pilot_mode)
        decision = evaluate_guard(requirement, state, request.url.path, request.url.query)

        if decision.outcome is GuardOutcome.LOADING:
            raise GuardLoading(decision.reason)
        if decision.outcome is GuardOutcome.REDIRECT:
            raise GuardRedirect(decision.location, decision.reason)
        if decision.outcome is GuardOutcome.DENY:
            raise GuardDenied(decision)
        return AdminRouteContext(auth=auth, organization=organization, decision=decision)

    return _guard
