from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from listingsite.db import decode_services


# Enums
class PropertyService(str, Enum):
    sales = "sales"
    rentals = "rentals"
    holiday_rentals = "holiday_rentals"


class AccountStatus(str, Enum):
    trial = "trial"
    active = "active"
    trial_expired = "trial_expired"
    payment_failed = "payment_failed"
    unsubscribed = "unsubscribed"
    archived = "archived"


DEFAULT_PROPERTY_SERVICES: List[PropertyService] = [PropertyService.sales]


# Models
class Organization(BaseModel):
    id: str
    slug: str
    business_name: str
    domain: Optional[str] = None
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    business_address: Optional[str] = None
    is_active: bool = True
    is_comped: bool = False
    hide_public_site: bool = False
    property_services: List[PropertyService] = Field(
        default_factory=lambda: list(DEFAULT_PROPERTY_SERVICES)
    )
    account_status: AccountStatus = AccountStatus.trial
    credit_spending_enabled: bool = False
    trial_ends_at: Optional[datetime] = None

    @field_validator("property_services")
    @classmethod
    def at_least_one_service(cls, v: List[PropertyService]) -> List[PropertyService]:
        if not v:
            raise ValueError("At least one service required")
        # de-duplicate, keep order
        seen: List[PropertyService] = []
        for service in v:
            if service not in seen:
                seen.append(service)
        return seen

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Organization":
        """Build from an `organizations` row; stored services may be JSON or empty."""
        data = dict(row)
        services = decode_services(data.get("property_services"))
        data["property_services"] = services or list(DEFAULT_PROPERTY_SERVICES)
        for flag in ("is_active", "is_comped", "hide_public_site", "credit_spending_enabled"):
            if flag in data:
                data[flag] = bool(data[flag])
        data.pop("created_at", None)
        data.pop("updated_at", None)
        return cls(**data)


class FeatureFlag(BaseModel):
    key: str
    name: str
    description: Optional[str] = None
    flag_type: str = "boolean"
    default_state: bool = False
    is_active: bool = True

    @property
    def enabled(self) -> bool:
        # is_active is the kill switch
        return self.is_active and self.default_state


class SiteCopyEntry(BaseModel):
    copy_key: str
    copy_value: Optional[str] = None


class ImpersonationState(BaseModel):
    session_id: str
    organization_id: str
    organization_slug: Optional[str] = None
    organization_name: Optional[str] = None
    started_at: Optional[str] = None
    reason: Optional[str] = None
