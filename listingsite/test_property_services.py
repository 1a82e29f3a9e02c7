"""
listingsite/test_property_services.py

An organization always keeps at least one property service.
"""

import json

import pytest

from listingsite.db import db_connection
from listingsite.models import Organization, PropertyService
from listingsite.property_services import (
    PropertyServicesError,
    category_to_service,
    enabled_categories,
    is_category_allowed,
    is_service_enabled,
    save_property_services,
    service_label,
    service_to_category,
    toggle_service,
    validate_services,
)


class TestToggle:
    def test_cannot_remove_last_service(self):
        with pytest.raises(PropertyServicesError, match="At least one service required"):
            toggle_service(["rentals"], "rentals", False)

    def test_empty_set_counts_as_sales_only(self):
        with pytest.raises(PropertyServicesError):
            toggle_service([], "sales", False)

    def test_enable_and_disable(self):
        assert toggle_service(["sales"], "holiday_rentals", True) == [
            PropertyService.sales, PropertyService.holiday_rentals,
        ]
        assert toggle_service(["sales", "rentals"], "sales", False) == [PropertyService.rentals]

    def test_enabling_twice_is_harmless(self):
        assert toggle_service(["sales"], "sales", True) == [PropertyService.sales]


class TestValidate:
    def test_catalog_order_and_dedupe(self):
        assert validate_services(["holiday_rentals", "sales", "sales"]) == [
            PropertyService.sales, PropertyService.holiday_rentals,
        ]

    def test_rejects_empty_and_unknown(self):
        with pytest.raises(PropertyServicesError):
            validate_services([])
        with pytest.raises(PropertyServicesError):
            validate_services(["timeshares"])

    def test_model_rejects_empty(self):
        with pytest.raises(ValueError):
            Organization(id="o", slug="o", business_name="O", property_services=[])


class TestCategories:
    def test_mapping(self):
        assert category_to_service("Holiday Rental") is PropertyService.holiday_rentals
        assert service_to_category("rentals") == "Rental"
        assert service_label("rentals") == "Lettings / Rentals"
        with pytest.raises(PropertyServicesError):
            category_to_service("Auction")

    def test_enabled_categories(self):
        assert enabled_categories(["rentals", "sales"]) == ["Listing", "Rental"]
        assert enabled_categories(None) == ["Listing"]
        assert is_category_allowed(["rentals"], "Rental")
        assert not is_category_allowed(["rentals"], "Listing")

    def test_is_service_enabled_defaults_to_sales(self):
        assert is_service_enabled([], "sales")
        assert not is_service_enabled(None, "rentals")


class TestSave:
    def test_persists_and_reads_back(self, db_path, add_org):
        add_org("org-a", "alpha")
        with db_connection() as conn:
            saved = save_property_services(conn, "org-a", ["rentals", "sales"])
            row = conn.execute("SELECT property_services FROM organizations WHERE id = 'org-a'").fetchone()
        assert saved == [PropertyService.sales, PropertyService.rentals]
        assert json.loads(row["property_services"]) == ["sales", "rentals"]

    def test_invalid_set_writes_nothing(self, db_path, add_org):
        add_org("org-a", "alpha", property_services=["rentals"])
        with db_connection() as conn:
            with pytest.raises(PropertyServicesError):
                save_property_services(conn, "org-a", [])
            row = conn.execute("SELECT * FROM organizations WHERE id = 'org-a'").fetchone()
        assert Organization.from_row(row).property_services == [PropertyService.rentals]

    def test_unknown_organization(self, db_path):
        with db_connection() as conn:
            with pytest.raises(LookupError):
                save_property_services(conn, "ghost", ["sales"])
