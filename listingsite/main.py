# ---------------------------------------------------------
# listingsite/main.py
# Listing site tenant core - HTTP surface
#
# Run: uvicorn listingsite.main:app --reload (from repo root)
#
# - /api/site               : organization + branding for the request host
# - /api/site/branding.css  : tenant branding tokens as CSS
# - /api/branding/preview   : origin-checked live preview of brand colors
# - /api/copy/{key}         : tenant copy with layered defaults
# - /api/flags              : effective feature flag state
# - /admin/*, /internal/*   : guarded admin views
# - /api/organizations/...  : property services
# - /api/credits/check      : credit affordability
# ---------------------------------------------------------

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from listingsite.branding import (
    BrandingSession,
    StyleScope,
    apply_branding,
    derive_tokens,
    favicon_href,
    resolve_favicon_url,
)
from listingsite.config import CORS_ORIGINS, DEFAULT_LOCALE, IS_PROD, TRUSTED_ADMIN_ORIGIN
from listingsite.content import SUPPORTED_LOCALES, ContentService, UnknownCopyKeyError
from listingsite.db import db_connection, init_db
from listingsite.dependencies import (
    AdminRouteContext,
    get_content_service,
    get_flag_service,
    get_site_resolution,
    get_store,
    require_route,
)
from listingsite.entitlements import (
    FeatureCostUnavailable,
    check_credits,
    is_billing_exempt,
)
from listingsite.features import FeatureFlagService
from listingsite.guards import ADMIN_HOME_PATH, RouteAccess, RouteRequirement
from listingsite.models import Organization, PropertyService
from listingsite.property_services import (
    PropertyServicesError,
    enabled_categories,
    save_property_services,
    toggle_service,
)
from listingsite.tenant import (
    OrganizationStore,
    ResolutionOutcome,
    SiteResolution,
    TenantLookupError,
)


# ---------------------------------------------------------
# Route requirements
# ---------------------------------------------------------
ADMIN_ROUTE = RouteRequirement(RouteAccess.ADMIN)
PILOT_ADMIN_ROUTE = RouteRequirement(RouteAccess.ADMIN, pilot_gated=True)
SUPER_ADMIN_PORTAL = RouteRequirement(RouteAccess.SUPER_ADMIN_PORTAL, fallback_path=ADMIN_HOME_PATH)
SUPER_ADMIN_ONLY = RouteRequirement(RouteAccess.SUPER_ADMIN_ONLY, fallback_path="/internal")


# ---------------------------------------------------------
# Request models
# ---------------------------------------------------------
class PreviewColors(BaseModel):
    primary: Optional[str] = None
    secondary: Optional[str] = None


class PreviewMessage(BaseModel):
    type: str
    colors: PreviewColors = Field(default_factory=PreviewColors)


class PropertyServicesRequest(BaseModel):
    services: List[str]


class CopyOverrideRequest(BaseModel):
    value: Optional[str] = None
    locale: str = DEFAULT_LOCALE


# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
app = FastAPI(title="Listing Site Tenant Core", version="0.1")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()


@app.exception_handler(TenantLookupError)
def tenant_lookup_failed(request: Request, exc: TenantLookupError):
    return JSONResponse(status_code=503, content={"detail": "Organization lookup unavailable"})


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def _now_ms() -> int:
    return int(time.time() * 1000)


def _site_origin(org: Optional[Organization]) -> str:
    # never taken from the Host header, which the client controls
    if org is not None and org.domain:
        return f"https://{org.domain}"
    return TRUSTED_ADMIN_ORIGIN


def _organization_payload(org: Organization) -> Dict[str, Any]:
    return org.model_dump(mode="json")


def _branding_payload(org: Optional[Organization]) -> Dict[str, str]:
    tokens = derive_tokens(org.primary_color if org else None, org.secondary_color if org else None)
    return tokens.as_properties()


def _require_member(ctx: AdminRouteContext, store: OrganizationStore, organization_id: str) -> None:
    if ctx.auth.is_super_admin:
        return
    if ctx.organization is not None and ctx.organization.id == organization_id:
        return
    if any(o.id == organization_id for o in store.list_for_user(ctx.auth.user_id)):
        return
    raise HTTPException(status_code=403, detail="Not a member of this organization")


def _normalize_locale(locale: Optional[str]) -> str:
    return locale if locale in SUPPORTED_LOCALES else DEFAULT_LOCALE


# ---------------------------------------------------------
# Routes
# ---------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/site")
def site(
    path: str = Query("/"),
    resolution: SiteResolution = Depends(get_site_resolution),
):
    body: Dict[str, Any] = {
        "outcome": resolution.outcome.value,
        "mode": resolution.mode.value,
        "redirect_to": resolution.redirect_to,
    }
    if resolution.outcome is ResolutionOutcome.NOT_FOUND:
        return JSONResponse(status_code=404, content=body)
    if resolution.outcome is ResolutionOutcome.REDIRECT_LOGIN:
        return body

    org = resolution.organization
    body.update(
        organization=_organization_payload(org),
        branding=_branding_payload(org),
        favicon=favicon_href(resolve_favicon_url(org, path), _now_ms()),
        categories=enabled_categories(org.property_services),
    )
    return body


@app.get("/api/site/branding.css")
def branding_css(resolution: SiteResolution = Depends(get_site_resolution)):
    if resolution.outcome is ResolutionOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Organization not found")
    org = resolution.organization
    scope = StyleScope()
    with apply_branding(org.primary_color if org else None, org.secondary_color if org else None, scope):
        css = scope.to_css()
    return Response(content=css, media_type="text/css")


@app.post("/api/branding/preview")
def branding_preview(
    message: PreviewMessage,
    request: Request,
    resolution: SiteResolution = Depends(get_site_resolution),
):
    """Re-derive tokens for a preview message; untrusted senders get 204 and no change."""
    org = resolution.organization
    session = BrandingSession(
        StyleScope(),
        origin=_site_origin(org),
        primary=org.primary_color if org else None,
        secondary=org.secondary_color if org else None,
    )
    with session:
        accepted = session.handle_message(request.headers.get("origin"), message.model_dump())
        if not accepted:
            return Response(status_code=204)
        return {"applied": True, "branding": session.scope.properties()}


@app.get("/api/copy/{key}")
def get_copy(
    key: str,
    fallback: Optional[str] = None,
    locale: Optional[str] = None,
    resolution: SiteResolution = Depends(get_site_resolution),
    content: ContentService = Depends(get_content_service),
) -> Dict[str, str]:
    org_id = resolution.organization.id if resolution.organization else None
    locale = _normalize_locale(locale)
    return {"key": key, "locale": locale, "value": content.get_copy(key, fallback, org_id, locale)}


@app.put("/api/copy/{key}")
def set_copy(
    key: str,
    req: CopyOverrideRequest,
    ctx: AdminRouteContext = Depends(require_route(ADMIN_ROUTE)),
    content: ContentService = Depends(get_content_service),
) -> Dict[str, Any]:
    if ctx.organization is None:
        raise HTTPException(status_code=404, detail="No organization selected")
    locale = _normalize_locale(req.locale)
    try:
        content.set_override(ctx.organization.id, key, req.value, locale)
    except UnknownCopyKeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"key": key, "locale": locale, "value": content.get_copy(key, None, ctx.organization.id, locale)}


@app.get("/api/flags")
def list_flags(flags: FeatureFlagService = Depends(get_flag_service)) -> Dict[str, bool]:
    return flags.get_feature_flags()


@app.get("/api/flags/{key}")
def get_flag(key: str, flags: FeatureFlagService = Depends(get_flag_service)) -> Dict[str, Any]:
    return {"key": key, "enabled": flags.is_feature_enabled(key)}


# Guarded admin views
@app.get("/admin/listings")
def admin_listings(ctx: AdminRouteContext = Depends(require_route(PILOT_ADMIN_ROUTE))) -> Dict[str, Any]:
    return {
        "view": "listings",
        "organization": _organization_payload(ctx.organization) if ctx.organization else None,
        "impersonating": ctx.auth.is_impersonating,
    }


@app.get("/internal")
def super_admin_portal(ctx: AdminRouteContext = Depends(require_route(SUPER_ADMIN_PORTAL))) -> Dict[str, Any]:
    return {"view": "internal", "role": ctx.auth.role}


@app.get("/internal/billing")
def super_admin_billing(ctx: AdminRouteContext = Depends(require_route(SUPER_ADMIN_ONLY))) -> Dict[str, Any]:
    return {"view": "internal_billing", "role": ctx.auth.role}


# Property services
@app.put("/api/organizations/{organization_id}/property-services")
def update_property_services(
    organization_id: str,
    req: PropertyServicesRequest,
    ctx: AdminRouteContext = Depends(require_route(ADMIN_ROUTE)),
    store: OrganizationStore = Depends(get_store),
) -> Dict[str, Any]:
    _require_member(ctx, store, organization_id)
    try:
        with db_connection() as conn:
            saved = save_property_services(conn, organization_id, req.services)
    except PropertyServicesError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError:
        raise HTTPException(status_code=404, detail="Organization not found")
    return {"organization_id": organization_id, "property_services": [s.value for s in saved]}


@app.post("/api/organizations/{organization_id}/property-services/{service}")
def set_property_service(
    organization_id: str,
    service: PropertyService,
    enabled: bool = Query(...),
    ctx: AdminRouteContext = Depends(require_route(ADMIN_ROUTE)),
    store: OrganizationStore = Depends(get_store),
) -> Dict[str, Any]:
    _require_member(ctx, store, organization_id)
    org = store.find_by_id(organization_id)
    if org is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    try:
        updated = toggle_service([s.value for s in org.property_services], service.value, enabled)
        with db_connection() as conn:
            saved = save_property_services(conn, organization_id, [s.value for s in updated])
    except PropertyServicesError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"organization_id": organization_id, "property_services": [s.value for s in saved]}


# Credits
@app.get("/api/credits/check")
def credits_check(
    feature_type: str,
    quantity: int = Query(1, ge=1),
    ctx: AdminRouteContext = Depends(require_route(ADMIN_ROUTE)),
) -> Dict[str, Any]:
    if ctx.organization is None:
        raise HTTPException(status_code=404, detail="No organization selected")
    try:
        result = check_credits(ctx.organization.id, feature_type, quantity)
    except FeatureCostUnavailable as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "organization_id": ctx.organization.id,
        "feature_type": feature_type,
        "quantity": quantity,
        "has_enough": result.has_enough,
        "balance": result.balance,
        "required": result.required,
        "shortfall": result.shortfall,
        "billing_exempt": is_billing_exempt(ctx.organization),
    }
