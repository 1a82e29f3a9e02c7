"""
listingsite/tenant.py

Organization resolution (tenant context).

Every request that needs tenant context resolves exactly one organization
here and passes the result down; nothing else queries `organizations` for
routing. Rules:

- The hostname is classified first; only `org-public` hosts may trigger a
  domain lookup.
- An explicit slug always wins over the custom domain.
- Admin or marketing hosts without a slug redirect to login. There is no
  default tenant.
- A custom domain whose organization hides its public site redirects to
  login.
- A lookup miss is a normal NOT_FOUND outcome, not an exception.
- A storage failure during the lookup is raised as TenantLookupError, since
  the whole view depends on it.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from listingsite.config import APP_DOMAIN, IS_DEV
from listingsite.db import db_connection
from listingsite.domain import DomainRules, SiteMode, classify, normalize_hostname
from listingsite.models import ImpersonationState, Organization

T = TypeVar("T")

LOGIN_REDIRECT = "/admin/login"
NOT_FOUND_REDIRECT = "/not-found"
# custom domains are not the app, so this one is absolute
HIDDEN_SITE_REDIRECT = f"{APP_DOMAIN}{LOGIN_REDIRECT}"


class TenantLookupError(Exception):
    """Storage failure while reading the organization a view depends on."""


# ============================================================================
# Store
# ============================================================================

class OrganizationStore:
    """Read access to the `organizations` table, active rows only unless noted."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        self.lookups = 0

    def _fetch_one(self, query: str, params: tuple) -> Optional[Organization]:
        self.lookups += 1
        try:
            with db_connection(self.db_path) as conn:
                row = conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            print(f"[TENANT] Organization lookup failed: {type(e).__name__}: {e}")
            raise TenantLookupError(str(e)) from e
        return Organization.from_row(row) if row is not None else None

    def find_by_slug(self, slug: str) -> Optional[Organization]:
        return self._fetch_one(
            "SELECT * FROM organizations WHERE slug = ? AND is_active = 1 LIMIT 1",
            (slug,),
        )

    def find_by_domain(self, domain: str) -> Optional[Organization]:
        return self._fetch_one(
            "SELECT * FROM organizations WHERE domain = ? AND is_active = 1 LIMIT 1",
            (domain,),
        )

    def find_by_id(self, organization_id: str) -> Optional[Organization]:
        # Includes inactive rows: super-admin tooling may open them
        return self._fetch_one(
            "SELECT * FROM organizations WHERE id = ? LIMIT 1",
            (organization_id,),
        )

    def list_for_user(self, user_id: str) -> List[Organization]:
        """Organizations a user belongs to, oldest membership first."""
        self.lookups += 1
        try:
            with db_connection(self.db_path) as conn:
                rows = conn.execute(
                    """
                    SELECT o.* FROM organizations o
                    JOIN user_organizations uo ON uo.organization_id = o.id
                    WHERE uo.user_id = ?
                    ORDER BY uo.created_at, o.id
                    """,
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as e:
            print(f"[TENANT] Membership lookup failed for user {user_id}: {e}")
            raise TenantLookupError(str(e)) from e
        return [Organization.from_row(r) for r in rows]


# ============================================================================
# Resolution
# ============================================================================

class ResolutionOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    REDIRECT_LOGIN = "redirect_login"


@dataclass(frozen=True)
class SiteResolution:
    """The single resolved-organization context for one navigation."""
    outcome: ResolutionOutcome
    mode: SiteMode
    organization: Optional[Organization] = None
    redirect_to: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.outcome is ResolutionOutcome.FOUND


def resolve_by_slug(store: OrganizationStore, slug: str) -> Optional[Organization]:
    return store.find_by_slug(slug)


def resolve_by_domain(
    store: OrganizationStore, hostname: str, rules: Optional[DomainRules] = None
) -> Optional[Organization]:
    """Custom-domain lookup; returns None without querying unless the host is org-public."""
    if classify(hostname, rules) is not SiteMode.ORG_PUBLIC:
        return None
    return store.find_by_domain(normalize_hostname(hostname))


def resolve_site(
    store: OrganizationStore,
    hostname: str,
    slug: Optional[str] = None,
    rules: Optional[DomainRules] = None,
) -> SiteResolution:
    """
    Resolve the organization for a request.

    Args:
        store: Organization store
        hostname: Request hostname (raw Host header accepted)
        slug: Explicit slug from the URL path, if any
        rules: Hostname classification rules

    Returns:
        SiteResolution with FOUND, NOT_FOUND or REDIRECT_LOGIN

    Raises:
        TenantLookupError: If the store cannot be read
    """
    mode = classify(hostname, rules)

    if slug:
        org = resolve_by_slug(store, slug)
    elif mode is SiteMode.ORG_PUBLIC:
        org = store.find_by_domain(normalize_hostname(hostname))
        if org is not None and org.hide_public_site:
            if IS_DEV:
                print(f"[TENANT] Public site hidden for {org.slug}, redirecting to login")
            return SiteResolution(
                ResolutionOutcome.REDIRECT_LOGIN, mode, redirect_to=HIDDEN_SITE_REDIRECT
            )
    else:
        if IS_DEV:
            print(f"[TENANT] No slug on {mode.value} host, redirecting to login")
        return SiteResolution(ResolutionOutcome.REDIRECT_LOGIN, mode, redirect_to=LOGIN_REDIRECT)

    if org is None:
        if IS_DEV:
            print(f"[TENANT] No active organization for slug={slug!r} host={hostname!r}")
        return SiteResolution(ResolutionOutcome.NOT_FOUND, mode, redirect_to=NOT_FOUND_REDIRECT)

    return SiteResolution(ResolutionOutcome.FOUND, mode, organization=org)


def resolve_admin_organization(
    store: OrganizationStore,
    user_id: str,
    impersonation: Optional[ImpersonationState] = None,
    preferred_org_id: Optional[str] = None,
) -> Optional[Organization]:
    """
    Organization an admin session works in.

    Priority: the impersonated organization, then the user's saved selection
    if they still belong to it, then their first organization.
    """
    if impersonation is not None:
        org = store.find_by_id(impersonation.organization_id)
        if org is not None:
            return org
        print(f"[TENANT] Impersonated organization {impersonation.organization_id} missing")

    orgs = store.list_for_user(user_id)
    if not orgs:
        return None
    if preferred_org_id:
        for org in orgs:
            if org.id == preferred_org_id:
                return org
    return orgs[0]


# ============================================================================
# Last navigation wins
# ============================================================================

@dataclass(frozen=True)
class NavigationTicket:
    generation: int
    route_key: Any


class NavigationTracker:
    """
    Generation guard for in-flight resolutions.

    Every navigation takes a ticket; a result is only committed if its ticket
    is still the newest, so a slow, stale resolution cannot overwrite the
    state of a later navigation.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._generation = 0

    def begin(self, route_key: Any) -> NavigationTicket:
        with self._lock:
            self._generation += 1
            return NavigationTicket(self._generation, route_key)

    def is_current(self, ticket: NavigationTicket) -> bool:
        with self._lock:
            return ticket.generation == self._generation

    def cancel(self) -> None:
        """Invalidate every outstanding ticket (navigation away)."""
        with self._lock:
            self._generation += 1


class ActiveOrganization(Generic[T]):
    """Holds the current route's resolved value behind a NavigationTracker."""

    def __init__(self, tracker: Optional[NavigationTracker] = None):
        self.tracker = tracker or NavigationTracker()
        self._value: Optional[T] = None
        self._route_key: Any = None
        self._lock = threading.Lock()

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def route_key(self) -> Any:
        return self._route_key

    def commit(self, ticket: NavigationTicket, value: Optional[T]) -> bool:
        with self._lock:
            if not self.tracker.is_current(ticket):
                if IS_DEV:
                    print(f"[TENANT] Discarded stale resolution for {ticket.route_key!r}")
                return False
            self._value = value
            self._route_key = ticket.route_key
            return True

    def navigate(self, route_key: Any, loader: Callable[[], Optional[T]]) -> bool:
        ticket = self.tracker.begin(route_key)
        return self.commit(ticket, loader())

    async def navigate_async(
        self, route_key: Any, loader: Callable[[], Awaitable[Optional[T]]]
    ) -> bool:
        ticket = self.tracker.begin(route_key)
        value = await loader()
        return self.commit(ticket, value)

    def leave(self) -> None:
        self.tracker.cancel()
        with self._lock:
            self._value = None
            self._route_key = None
