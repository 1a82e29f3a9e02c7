"""
listingsite/domain.py

Hostname classification for the three site modes served from one deployment:

- marketing:  the root product site (bare domain and www)
- admin:      the admin portal, loopback hosts and hosting preview hosts
- org-public: everything else, i.e. a tenant's custom domain

Classification is pure and runs before any database access; only
`org-public` may trigger a domain-based organization lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional
from urllib.parse import quote

from listingsite.config import (
    ADMIN_HOSTNAME,
    APP_DOMAIN,
    DEV_PREVIEW_SUFFIXES,
    IS_DEV,
    LOOPBACK_HOSTNAMES,
    MARKETING_HOSTNAMES,
)


class SiteMode(str, Enum):
    MARKETING = "marketing"
    ADMIN = "admin"
    ORG_PUBLIC = "org-public"


@dataclass(frozen=True)
class DomainRules:
    """Hostname sets consulted by `classify`, in priority order."""
    marketing_hosts: FrozenSet[str]
    admin_hosts: FrozenSet[str]
    preview_suffixes: FrozenSet[str]

    @classmethod
    def from_config(cls) -> "DomainRules":
        return cls(
            marketing_hosts=frozenset(MARKETING_HOSTNAMES),
            admin_hosts=frozenset([ADMIN_HOSTNAME, *LOOPBACK_HOSTNAMES]),
            preview_suffixes=frozenset(DEV_PREVIEW_SUFFIXES),
        )


DEFAULT_RULES = DomainRules.from_config()


def normalize_hostname(host: Optional[str]) -> str:
    """
    Reduce a raw Host header to a bare lowercase hostname.

    Strips the port (including bracketed IPv6 forms) and a trailing dot.
    None becomes the empty string, which classifies as org-public.
    """
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("["):
        end = host.find("]")
        host = host[1:end] if end != -1 else host[1:]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def classify(hostname: str, rules: Optional[DomainRules] = None) -> SiteMode:
    """
    Classify a hostname into exactly one site mode.

    Args:
        hostname: Request hostname; ports and case are normalized away
        rules: Hostname sets to use (defaults to configuration)

    Returns:
        SiteMode for the hostname. Never raises.
    """
    rules = rules or DEFAULT_RULES
    host = normalize_hostname(hostname)

    if host in rules.marketing_hosts:
        mode = SiteMode.MARKETING
    elif host in rules.admin_hosts or any(host.endswith(s) for s in rules.preview_suffixes):
        mode = SiteMode.ADMIN
    else:
        mode = SiteMode.ORG_PUBLIC

    if IS_DEV:
        print(f"[DOMAIN] {host or '<empty>'} -> {mode.value}")
    return mode


def is_public_site(hostname: str, rules: Optional[DomainRules] = None) -> bool:
    return classify(hostname, rules) is SiteMode.ORG_PUBLIC


def is_marketing_site(hostname: str, rules: Optional[DomainRules] = None) -> bool:
    return classify(hostname, rules) is SiteMode.MARKETING


def is_admin_site(hostname: str, rules: Optional[DomainRules] = None) -> bool:
    return classify(hostname, rules) is SiteMode.ADMIN


# ============================================================================
# App links
# ============================================================================

def get_app_url(path: str, hostname: str, rules: Optional[DomainRules] = None) -> str:
    """
    Build a link into the admin app.

    Links rendered on the marketing site must leave it for the app domain;
    everywhere else a relative path already lands in the app.
    """
    if not path.startswith("/"):
        path = "/" + path
    if classify(hostname, rules) is SiteMode.MARKETING:
        return f"{APP_DOMAIN}{path}"
    return path


def get_login_url(hostname: str, rules: Optional[DomainRules] = None) -> str:
    return get_app_url("/admin/login", hostname, rules)


def get_dashboard_url(hostname: str, rules: Optional[DomainRules] = None) -> str:
    return get_app_url("/admin/listings", hostname, rules)


def get_signup_url(hostname: str, plan: Optional[str] = None, rules: Optional[DomainRules] = None) -> str:
    path = "/signup"
    if plan:
        path += f"?plan={quote(plan)}"
    return get_app_url(path, hostname, rules)
