"""
listingsite/property_services.py

Which listing categories an organization offers (sales, rentals, holiday
rentals). An organization always offers at least one; every mutation path
enforces that before anything is written.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Iterable, List, Optional

from listingsite.config import IS_DEV
from listingsite.db import encode_services
from listingsite.models import DEFAULT_PROPERTY_SERVICES, PropertyService


class PropertyServicesError(ValueError):
    """An update would leave an organization with an invalid service set."""


@dataclass(frozen=True)
class ServiceInfo:
    value: PropertyService
    label: str
    description: str
    category: str


PROPERTY_SERVICES: List[ServiceInfo] = [
    ServiceInfo(PropertyService.sales, "Property Sales",
                "List properties for sale", "Listing"),
    ServiceInfo(PropertyService.rentals, "Lettings / Rentals",
                "Long-term rental properties", "Rental"),
    ServiceInfo(PropertyService.holiday_rentals, "Holiday Rentals",
                "Short-term rentals with booking platform links (Airbnb, VRBO, etc.)",
                "Holiday Rental"),
]

_BY_VALUE = {s.value: s for s in PROPERTY_SERVICES}
_BY_CATEGORY = {s.category: s.value for s in PROPERTY_SERVICES}


def service_label(service: str) -> str:
    try:
        return _BY_VALUE[PropertyService(service)].label
    except ValueError:
        return service


def category_to_service(category: str) -> PropertyService:
    """Map a listing category ("Listing", "Rental", "Holiday Rental") to its service."""
    try:
        return _BY_CATEGORY[category]
    except KeyError:
        raise PropertyServicesError(f"Unknown listing category: {category}")


def service_to_category(service: str) -> str:
    return _BY_VALUE[PropertyService(service)].category


def _effective(services: Optional[Iterable[str]]) -> List[PropertyService]:
    # an empty or missing set means the default (sales only)
    values = [PropertyService(s) for s in (services or [])]
    return values or list(DEFAULT_PROPERTY_SERVICES)


def is_service_enabled(services: Optional[Iterable[str]], service: str) -> bool:
    return PropertyService(service) in _effective(services)


def enabled_categories(services: Optional[Iterable[str]]) -> List[str]:
    effective = _effective(services)
    return [s.category for s in PROPERTY_SERVICES if s.value in effective]


def is_category_allowed(services: Optional[Iterable[str]], category: str) -> bool:
    return category in enabled_categories(services)


def validate_services(services: Iterable[str]) -> List[PropertyService]:
    """
    Normalize a requested service set.

    Raises:
        PropertyServicesError: Unknown value, or nothing selected
    """
    result: List[PropertyService] = []
    for raw in services:
        try:
            service = PropertyService(raw)
        except ValueError:
            raise PropertyServicesError(f"Unknown property service: {raw}")
        if service not in result:
            result.append(service)
    if not result:
        raise PropertyServicesError("At least one service required")
    # catalog order, so stored values are stable
    return [s.value for s in PROPERTY_SERVICES if s.value in result]


def toggle_service(current: Optional[Iterable[str]], service: str, enabled: bool) -> List[PropertyService]:
    """Return the set after switching one service on or off; the last one cannot go."""
    selected = _effective(current)
    target = PropertyService(service)
    if enabled:
        if target not in selected:
            selected.append(target)
    else:
        selected = [s for s in selected if s is not target]
        if not selected:
            raise PropertyServicesError("At least one service required")
    return validate_services(s.value for s in selected)


def save_property_services(conn: sqlite3.Connection, organization_id: str, services: Iterable[str]) -> List[PropertyService]:
    """
    Validate and store an organization's services.

    Returns:
        The stored list

    Raises:
        PropertyServicesError: If the set is invalid (nothing is written)
        LookupError: If the organization does not exist
    """
    validated = validate_services(services)
    cur = conn.execute(
        "UPDATE organizations SET property_services = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (encode_services([s.value for s in validated]), organization_id),
    )
    if cur.rowcount == 0:
        raise LookupError(f"Organization not found: {organization_id}")
    conn.commit()
    if IS_DEV:
        print(f"[SERVICES] {organization_id} -> {[s.value for s in validated]}")
    return validated
