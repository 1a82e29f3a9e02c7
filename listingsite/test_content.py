"""
listingsite/test_content.py

Copy resolution order, tenant overrides and fail-closed reads.

Run:
    pytest listingsite/test_content.py -v
"""

import sqlite3
from unittest.mock import patch

import pytest

from listingsite.cache import ReadThroughCache, run_inline
from listingsite.content import (
    CONTENT_KEY_TO_LOCALE_KEY,
    SITE_COPY_FIELDS,
    SITE_COPY_GROUPS,
    ContentService,
    UnknownCopyKeyError,
    resolve_copy,
)


@pytest.fixture
def content(db_path, add_org):
    add_org("org-a", "alpha")
    return ContentService(cache=ReadThroughCache(60, refresh_runner=run_inline))


class TestRegistry:
    def test_every_field_has_a_group_and_locale_mapping(self):
        for field in SITE_COPY_FIELDS:
            assert field.group in SITE_COPY_GROUPS
            assert field.key in CONTENT_KEY_TO_LOCALE_KEY
            assert field.default_value


class TestResolveCopy:
    def test_override_wins(self):
        assert resolve_copy("hero_headline", {"hero_headline": "Homes in Cork"}, "Fallback") == "Homes in Cork"

    def test_empty_override_is_skipped(self):
        assert resolve_copy("hero_headline", {"hero_headline": ""}, "Fallback") == "Fallback"

    def test_fallback_before_defaults(self):
        assert resolve_copy("valuation_button", {}, "Book a visit") == "Book a visit"

    def test_locale_default(self):
        assert resolve_copy("valuation_button", {}) == "Request a Valuation"
        assert resolve_copy("search_placeholder", {}, locale="en-US") == "Search by city, ZIP code or address..."
        # locales without their own string use the base table
        assert resolve_copy("search_placeholder", {}, locale="en-GB") == "Search by location or address..."

    def test_unknown_key_returns_key(self):
        assert resolve_copy("mystery_key", {}) == "mystery_key"


class TestContentService:
    def test_override_round_trip(self, content):
        content.set_override("org-a", "hero_headline", "Homes in Cork")
        assert content.get_copy("hero_headline", organization_id="org-a") == "Homes in Cork"
        # other organizations and locales are untouched
        assert content.get_copy("hero_headline", organization_id="org-b") == "Find Your Perfect Property"
        assert content.get_copy("hero_headline", organization_id="org-a", locale="en-US") == "Find Your Perfect Property"

    def test_clearing_an_override(self, content):
        content.set_override("org-a", "footer_tagline", "Since 1982")
        content.set_override("org-a", "footer_tagline", "")
        assert content.get_copy("footer_tagline", organization_id="org-a") == "Your trusted property partner"

    def test_unknown_key_rejected(self, content):
        with pytest.raises(UnknownCopyKeyError):
            content.set_override("org-a", "not_a_field", "x")

    def test_bound_resolver(self, content):
        content.set_override("org-a", "alerts_button", "Alert me")
        resolver = content.for_organization("org-a")
        assert resolver.get_copy("alerts_button") == "Alert me"
        assert resolver.get_copy("alerts_headline", "Nothing here?") == "Nothing here?"
        assert resolver.overrides == {"alerts_button": "Alert me"}

    def test_no_organization_means_defaults(self, content):
        assert content.get_overrides(None) == {}
        assert content.get_copy("filters_button") == "Filters"

    def test_backend_error_fails_closed_to_default(self, content):
        with patch("listingsite.content.db_connection", side_effect=sqlite3.OperationalError("no such table")):
            assert content.get_overrides("org-a") == {}
            value = content.get_copy("hero_headline", organization_id="org-a")
        assert value == "Find Your Perfect Property"

    def test_error_during_refresh_keeps_cached_overrides(self, db_path, add_org):
        add_org("org-c", "charlie")
        clock = [0.0]
        service = ContentService(cache=ReadThroughCache(60, clock=lambda: clock[0], refresh_runner=run_inline))
        service.set_override("org-c", "hero_headline", "Charlie Homes")
        assert service.get_copy("hero_headline", organization_id="org-c") == "Charlie Homes"

        clock[0] = 120
        with patch("listingsite.content.db_connection", side_effect=sqlite3.OperationalError("gone")):
            assert service.get_copy("hero_headline", organization_id="org-c") == "Charlie Homes"
