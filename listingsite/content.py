"""
listingsite/content.py

Per-tenant site copy with layered defaults.

Resolution order for a copy key:

    1. the organization's stored override for the locale (non-empty)
    2. the caller-supplied fallback (non-empty)
    3. the locale's translation for the key
    4. the statically registered default
    5. the key itself, so a render never shows empty text

Override reads go through a read-through cache and fail closed to an empty
map; a storage error never reaches the rendering layer.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Dict, List, Optional

from listingsite.cache import ReadThroughCache
from listingsite.config import CONTENT_CACHE_SECONDS, DEFAULT_LOCALE, IS_DEV
from listingsite.db import db_connection, get_organization_site_copy
from listingsite.models import SiteCopyEntry


# ============================================================================
# Registry
# ============================================================================

@dataclass(frozen=True)
class SiteCopyField:
    key: str
    label: str
    description: str
    default_value: str
    group: str
    multiline: bool = False


SITE_COPY_FIELDS: List[SiteCopyField] = [
    SiteCopyField("hero_headline", "Hero Headline",
                  "Main heading displayed in the hero section",
                  "Find Your Perfect Property", "hero"),
    SiteCopyField("hero_cta_button", "CTA Button Text",
                  "Text on the main call-to-action button",
                  "Sell Your Property", "hero"),
    SiteCopyField("search_placeholder", "Search Placeholder",
                  "Placeholder text in the property search input",
                  "Search by location, address, or town...", "search"),
    SiteCopyField("filters_button", "Filters Button Text",
                  "Text on the filters toggle button",
                  "Filters", "search"),
    SiteCopyField("valuation_headline", "Valuation Section Headline",
                  "Heading for the property valuation CTA section",
                  "Thinking of Selling?", "valuation"),
    SiteCopyField("valuation_description", "Valuation Section Description",
                  "Description text below the valuation headline",
                  "Get a free, no-obligation valuation of your property from our expert team.",
                  "valuation", multiline=True),
    SiteCopyField("valuation_button", "Valuation Button Text",
                  "Text on the valuation request button",
                  "Request Free Valuation", "valuation"),
    SiteCopyField("alerts_headline", "Property Alerts Headline",
                  "Heading for the property alerts section",
                  "Can't find what you're looking for?", "alerts"),
    SiteCopyField("alerts_description", "Property Alerts Description",
                  "Description text for the property alerts section",
                  "Set up a property alert and be the first to know when matching properties are listed.",
                  "alerts", multiline=True),
    SiteCopyField("alerts_button", "Property Alerts Button Text",
                  "Text on the property alerts button",
                  "Set Up Alert", "alerts"),
    SiteCopyField("testimonials_headline", "Testimonials Section Headline",
                  "Heading for the testimonials/reviews section",
                  "What Our Clients Say", "testimonials"),
    SiteCopyField("footer_tagline", "Footer Tagline",
                  "Short tagline displayed in the footer",
                  "Your trusted property partner", "footer"),
]

SITE_COPY_FIELDS_BY_KEY: Dict[str, SiteCopyField] = {f.key: f for f in SITE_COPY_FIELDS}

SITE_COPY_GROUPS: Dict[str, Dict[str, str]] = {
    "hero": {"label": "Hero Section", "description": "Main banner and call-to-action"},
    "search": {"label": "Search & Filters", "description": "Property search controls"},
    "valuation": {"label": "Valuation CTA", "description": "Free valuation request section"},
    "alerts": {"label": "Property Alerts", "description": "Email alert signup section"},
    "testimonials": {"label": "Testimonials", "description": "Client reviews section"},
    "footer": {"label": "Footer", "description": "Footer content"},
}

SUPPORTED_LOCALES = ("en-IE", "en-GB", "en-US")
BASE_LOCALE = "en-IE"

CONTENT_KEY_TO_LOCALE_KEY: Dict[str, str] = {
    "hero_headline": "listings.public.findProperty",
    "hero_cta_button": "listings.public.sellProperty",
    "search_placeholder": "listings.public.searchPlaceholder",
    "filters_button": "listings.filters.label",
    "valuation_headline": "listings.public.thinkingOfSelling",
    "valuation_description": "listings.public.getFreeValuation",
    "valuation_button": "listings.public.requestValuation",
    "alerts_headline": "listings.public.cantFindProperty",
    "alerts_description": "listings.public.beFirstToKnow",
    "alerts_button": "listings.public.getNotified",
    "testimonials_headline": "reviews.title",
    "footer_tagline": "footer.tagline",
}

# en-IE is the base table; other locales list only what differs
LOCALE_STRINGS: Dict[str, Dict[str, str]] = {
    "en-IE": {
        "listings.public.findProperty": "Find Your Perfect Property",
        "listings.public.sellProperty": "Sell Your Property Quickly And Easily!",
        "listings.public.searchPlaceholder": "Search by location or address...",
        "listings.filters.label": "Filters",
        "listings.public.thinkingOfSelling": "Thinking of Selling?",
        "listings.public.getFreeValuation": "Get a free property valuation from our expert team",
        "listings.public.requestValuation": "Request a Valuation",
        "listings.public.cantFindProperty": "Can't Find What You're Looking For?",
        "listings.public.beFirstToKnow": "Be the first to know of new properties that suit your needs",
        "listings.public.getNotified": "Get Notified",
        "reviews.title": "What Our Clients Say",
        "footer.tagline": "Your trusted property partner",
    },
    "en-GB": {},
    "en-US": {
        "listings.public.searchPlaceholder": "Search by city, ZIP code or address...",
        "listings.public.getFreeValuation": "Get a free home valuation from our expert team",
    },
}


def translate(locale_key: str, locale: str = DEFAULT_LOCALE) -> Optional[str]:
    table = LOCALE_STRINGS.get(locale, {})
    if locale_key in table:
        return table[locale_key]
    return LOCALE_STRINGS[BASE_LOCALE].get(locale_key)


class UnknownCopyKeyError(ValueError):
    """Raised when saving an override for a key that is not registered."""


# ============================================================================
# Service
# ============================================================================

class ContentService:
    def __init__(self, db_path: Optional[str] = None, cache: Optional[ReadThroughCache] = None):
        self.db_path = db_path
        self.cache = cache or ReadThroughCache(CONTENT_CACHE_SECONDS, label="CONTENT")

    def _load_overrides(self, organization_id: str, locale: str) -> Dict[str, str]:
        with db_connection(self.db_path) as conn:
            entries = [SiteCopyEntry(**r) for r in get_organization_site_copy(conn, organization_id, locale)]
        return {e.copy_key: e.copy_value for e in entries if e.copy_value}

    def get_overrides(self, organization_id: Optional[str], locale: str = DEFAULT_LOCALE) -> Dict[str, str]:
        """Stored overrides for an organization; {} when absent or unreadable."""
        if not organization_id:
            return {}
        try:
            return self.cache.get(
                (organization_id, locale),
                lambda: self._load_overrides(organization_id, locale),
            )
        except sqlite3.Error as e:
            print(f"[CONTENT] Content not available for {organization_id}: {type(e).__name__}: {e}")
            return {}

    def get_copy(
        self,
        key: str,
        fallback: Optional[str] = None,
        organization_id: Optional[str] = None,
        locale: str = DEFAULT_LOCALE,
    ) -> str:
        overrides = self.get_overrides(organization_id, locale)
        return resolve_copy(key, overrides, fallback, locale)

    def for_organization(self, organization_id: Optional[str], locale: str = DEFAULT_LOCALE) -> "CopyResolver":
        return CopyResolver(self, organization_id, locale)

    def set_override(
        self,
        organization_id: str,
        key: str,
        value: Optional[str],
        locale: str = DEFAULT_LOCALE,
    ) -> None:
        """
        Save (or clear, with an empty value) an organization's copy override.

        Raises:
            UnknownCopyKeyError: If the key is not a registered copy field
            sqlite3.Error: On storage failure (writes are not fail-closed)
        """
        if key not in SITE_COPY_FIELDS_BY_KEY:
            raise UnknownCopyKeyError(f"Unknown copy key: {key}")
        with db_connection(self.db_path) as conn:
            if value:
                conn.execute(
                    """
                    INSERT INTO organization_site_copy (organization_id, locale, copy_key, copy_value)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (organization_id, locale, copy_key)
                    DO UPDATE SET copy_value = excluded.copy_value, updated_at = CURRENT_TIMESTAMP
                    """,
                    (organization_id, locale, key, value),
                )
            else:
                conn.execute(
                    "DELETE FROM organization_site_copy WHERE organization_id = ? AND locale = ? AND copy_key = ?",
                    (organization_id, locale, key),
                )
            conn.commit()
        self.cache.invalidate((organization_id, locale))
        if IS_DEV:
            print(f"[CONTENT] {'Saved' if value else 'Cleared'} {key} for {organization_id} ({locale})")


def resolve_copy(
    key: str,
    overrides: Dict[str, str],
    fallback: Optional[str] = None,
    locale: str = DEFAULT_LOCALE,
) -> str:
    if overrides.get(key):
        return overrides[key]
    if fallback:
        return fallback
    locale_key = CONTENT_KEY_TO_LOCALE_KEY.get(key)
    if locale_key:
        translated = translate(locale_key, locale)
        if translated:
            return translated
    field = SITE_COPY_FIELDS_BY_KEY.get(key)
    if field and field.default_value:
        return field.default_value
    return key


@dataclass
class CopyResolver:
    """Copy lookups bound to one resolved organization and locale."""
    service: ContentService
    organization_id: Optional[str]
    locale: str = DEFAULT_LOCALE

    @property
    def overrides(self) -> Dict[str, str]:
        return self.service.get_overrides(self.organization_id, self.locale)

    def get_copy(self, key: str, fallback: Optional[str] = None) -> str:
        return resolve_copy(key, self.overrides, fallback, self.locale)
