"""
Feature flag reads for the listing site.

Flags are global rows in `feature_flags`. The effective state is
`is_active AND default_state`; `is_active` is the kill switch. Reads fail
closed: a missing row or a storage error means disabled, never an exception.
"""

from __future__ import annotations

import sqlite3
from typing import Dict, Optional

from listingsite.cache import ReadThroughCache
from listingsite.config import FEATURE_FLAG_CACHE_SECONDS, IS_DEV
from listingsite.db import db_connection
from listingsite.models import FeatureFlag


class FeatureFlagKey:
    UK_LAUNCH = "uk_launch"
    US_LAUNCH = "us_launch"
    I18N_ENABLED = "i18n_enabled"
    PILOT_MODE = "pilot_mode"
    PUBLIC_SIGNUP_ENABLED = "public_signup_enabled"
    MARKETING_VISIBLE = "marketing_visible"
    BILLING_ENFORCEMENT = "billing_enforcement"


ALL_FLAGS_KEY = ("__all__",)


def _flag_from_row(row: sqlite3.Row) -> FeatureFlag:
    return FeatureFlag(
        key=row["key"],
        name=row["name"],
        description=row["description"],
        flag_type=row["flag_type"] or "boolean",
        default_state=bool(row["default_state"]),
        is_active=bool(row["is_active"]),
    )


class FeatureFlagService:
    """Cached flag reader; one instance per app."""

    def __init__(self, db_path: Optional[str] = None, cache: Optional[ReadThroughCache] = None):
        self.db_path = db_path
        self.cache = cache or ReadThroughCache(FEATURE_FLAG_CACHE_SECONDS, label="FLAGS")

    # ---- storage reads (raise sqlite3.Error) -------------------------------

    def _load_flag(self, key: str) -> Optional[FeatureFlag]:
        with db_connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT key, name, description, flag_type, default_state, is_active
                FROM feature_flags WHERE key = ?
                """,
                (key,),
            ).fetchone()
        return _flag_from_row(row) if row is not None else None

    def _load_all(self) -> Dict[str, bool]:
        with db_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT key, name, description, flag_type, default_state, is_active FROM feature_flags"
            ).fetchall()
        return {r["key"]: _flag_from_row(r).enabled for r in rows}

    # ---- public API ---------------------------------------------------------

    def get_flag(self, key: str) -> Optional[FeatureFlag]:
        try:
            return self.cache.get(("flag", key), lambda: self._load_flag(key))
        except sqlite3.Error as e:
            print(f"[FLAGS] Failed to read flag {key}: {type(e).__name__}: {e}")
            return None

    def is_feature_enabled(self, key: str) -> bool:
        flag = self.get_flag(key)
        enabled = bool(flag and flag.enabled)
        if IS_DEV and flag is None:
            print(f"[FLAGS] {key} missing, treating as disabled")
        return enabled

    def get_feature_flags(self) -> Dict[str, bool]:
        """Effective state of every stored flag; {} if they cannot be read."""
        try:
            return dict(self.cache.get(ALL_FLAGS_KEY, self._load_all))
        except sqlite3.Error as e:
            print(f"[FLAGS] Failed to read flags: {type(e).__name__}: {e}")
            return {}

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self.cache.invalidate()
        else:
            self.cache.invalidate(("flag", key))
            self.cache.invalidate(ALL_FLAGS_KEY)
