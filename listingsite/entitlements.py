"""
listingsite/entitlements.py

Credit and account-lifecycle entitlements for an organization.

This module centralizes the logic for:
- Billing exemption (configured org ids and comped/pilot organizations)
- Credit balance and per-feature cost lookups
- "Can this organization afford N uses of feature X" checks
- Trial and account status helpers

Key principles:
- Balance reads are auxiliary: a storage error reads as a zero balance
- Cost reads are not: a missing usage rate raises, since charging an
  unknown amount is never acceptable

Source of truth: credit_balances and usage_rates tables in SQLite
"""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from listingsite.config import BILLING_EXEMPT_ORG_IDS, EXEMPT_CREDIT_BALANCE
from listingsite.db import db_connection
from listingsite.models import AccountStatus, Organization


class FeatureType:
    POST_GENERATION = "post_generation"
    VIDEO_GENERATION = "video_generation"
    IMAGE_ENHANCEMENT = "image_enhancement"
    AI_ASSISTANT = "ai_assistant"
    PROPERTY_EXTRACTION = "property_extraction"
    EMAIL_SEND = "email_send"


FEATURE_TYPES = (
    FeatureType.POST_GENERATION,
    FeatureType.VIDEO_GENERATION,
    FeatureType.IMAGE_ENHANCEMENT,
    FeatureType.AI_ASSISTANT,
    FeatureType.PROPERTY_EXTRACTION,
    FeatureType.EMAIL_SEND,
)


class FeatureCostUnavailable(Exception):
    """No active usage rate for a feature (or the rate could not be read)."""

    def __init__(self, feature_type: str, message: Optional[str] = None):
        self.feature_type = feature_type
        super().__init__(message or f"No active usage rate for feature: {feature_type}")


# ============================================================================
# Exemption
# ============================================================================

def is_exempt_organization(organization_id: Optional[str], exempt_ids: Optional[Iterable[str]] = None) -> bool:
    ids = BILLING_EXEMPT_ORG_IDS if exempt_ids is None else [i.strip().lower() for i in exempt_ids]
    return bool(organization_id) and organization_id.lower() in ids


def is_billing_exempt(organization: Optional[Organization], exempt_ids: Optional[Iterable[str]] = None) -> bool:
    """Comped/pilot organizations and configured ids bypass credit requirements."""
    if organization is None:
        return False
    return organization.is_comped or is_exempt_organization(organization.id, exempt_ids)


# ============================================================================
# Balance and cost
# ============================================================================

def get_credit_balance(
    organization_id: str,
    db_path: Optional[str] = None,
    exempt_ids: Optional[Iterable[str]] = None,
) -> float:
    """
    Current credit balance for an organization.

    Exempt organizations always report an effectively unlimited balance.
    Storage errors read as 0 so callers block spending rather than crash.
    """
    if is_exempt_organization(organization_id, exempt_ids):
        return EXEMPT_CREDIT_BALANCE
    try:
        with db_connection(db_path) as conn:
            row = conn.execute(
                "SELECT balance FROM credit_balances WHERE organization_id = ?",
                (organization_id,),
            ).fetchone()
    except sqlite3.Error as e:
        print(f"[BILLING] Credit balance fetch failed, returning 0: {type(e).__name__}: {e}")
        return 0
    return row["balance"] if row is not None and row["balance"] is not None else 0


def get_feature_cost(feature_type: str, db_path: Optional[str] = None) -> float:
    """
    Credits charged per use of a feature.

    Raises:
        FeatureCostUnavailable: No active rate, or the rate could not be read
    """
    try:
        with db_connection(db_path) as conn:
            row = conn.execute(
                "SELECT credits_per_use FROM usage_rates WHERE feature_type = ? AND is_active = 1",
                (feature_type,),
            ).fetchone()
    except sqlite3.Error as e:
        print(f"[BILLING] Failed to get feature cost for {feature_type}: {e}")
        raise FeatureCostUnavailable(feature_type, str(e)) from e
    if row is None:
        raise FeatureCostUnavailable(feature_type)
    return row["credits_per_use"]


@dataclass(frozen=True)
class CreditCheckResult:
    has_enough: bool
    balance: float
    required: float
    shortfall: float


def _check(balance: float, required: float) -> CreditCheckResult:
    return CreditCheckResult(
        has_enough=balance >= required,
        balance=balance,
        required=required,
        shortfall=max(0, required - balance),
    )


def check_credits(
    organization_id: str,
    feature_type: str,
    quantity: int = 1,
    db_path: Optional[str] = None,
    exempt_ids: Optional[Iterable[str]] = None,
) -> CreditCheckResult:
    """Whether an organization can afford `quantity` uses of one feature."""
    cost = get_feature_cost(feature_type, db_path)
    balance = get_credit_balance(organization_id, db_path, exempt_ids)
    return _check(balance, cost * quantity)


def check_multiple_credits(
    organization_id: str,
    items: List[Tuple[str, int]],
    db_path: Optional[str] = None,
    exempt_ids: Optional[Iterable[str]] = None,
) -> CreditCheckResult:
    """Same as check_credits for a basket of (feature_type, quantity) pairs."""
    required = sum(get_feature_cost(feature, db_path) * qty for feature, qty in items)
    balance = get_credit_balance(organization_id, db_path, exempt_ids)
    return _check(balance, required)


# ============================================================================
# Account lifecycle
# ============================================================================

ACCOUNT_STATUS_LABELS: Dict[AccountStatus, str] = {
    AccountStatus.trial: "Trial",
    AccountStatus.active: "Active",
    AccountStatus.trial_expired: "Trial Expired",
    AccountStatus.payment_failed: "Payment Failed",
    AccountStatus.unsubscribed: "Unsubscribed",
    AccountStatus.archived: "Archived",
}


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_trial_active(organization: Organization, now: Optional[datetime] = None) -> bool:
    if organization.account_status is not AccountStatus.trial or organization.trial_ends_at is None:
        return False
    return _aware(organization.trial_ends_at) > _now(now)


def trial_days_remaining(trial_ends_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days left, rounded up; 0 once the trial has ended."""
    if trial_ends_at is None:
        return 0
    seconds = (_aware(trial_ends_at) - _now(now)).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def is_account_active(organization: Organization) -> bool:
    return organization.account_status is AccountStatus.active and organization.credit_spending_enabled


def can_spend_credits(organization: Organization) -> bool:
    return organization.credit_spending_enabled


def account_status_label(status: str) -> str:
    try:
        return ACCOUNT_STATUS_LABELS[AccountStatus(status)]
    except ValueError:
        return status
