"""
listingsite/test_features.py

Feature flag effective state and fail-closed reads.
"""

import sqlite3
from unittest.mock import patch

import pytest

from listingsite.cache import ReadThroughCache, run_inline
from listingsite.features import FeatureFlagKey, FeatureFlagService


@pytest.fixture
def flags(db_path):
    return FeatureFlagService(cache=ReadThroughCache(300, refresh_runner=run_inline))


class TestIsFeatureEnabled:
    def test_active_and_on(self, flags, add_flag):
        add_flag(FeatureFlagKey.PILOT_MODE, default_state=True, is_active=True)
        assert flags.is_feature_enabled(FeatureFlagKey.PILOT_MODE) is True

    def test_kill_switch_wins(self, flags, add_flag):
        add_flag(FeatureFlagKey.UK_LAUNCH, default_state=True, is_active=False)
        assert flags.is_feature_enabled(FeatureFlagKey.UK_LAUNCH) is False

    def test_off(self, flags, add_flag):
        add_flag(FeatureFlagKey.US_LAUNCH, default_state=False, is_active=True)
        assert flags.is_feature_enabled(FeatureFlagKey.US_LAUNCH) is False

    def test_missing_flag_is_disabled(self, flags):
        assert flags.is_feature_enabled("does_not_exist") is False

    def test_backend_error_is_disabled(self, flags):
        with patch("listingsite.features.db_connection", side_effect=sqlite3.OperationalError("no such table")):
            assert flags.is_feature_enabled(FeatureFlagKey.PILOT_MODE) is False
            assert flags.get_feature_flags() == {}

    def test_flag_details(self, flags, add_flag):
        add_flag(FeatureFlagKey.I18N_ENABLED)
        flag = flags.get_flag(FeatureFlagKey.I18N_ENABLED)
        assert flag.name == "I18N Enabled"
        assert flag.flag_type == "boolean"
        assert flag.enabled


class TestGetFeatureFlags:
    def test_map_of_effective_states(self, flags, add_flag):
        add_flag(FeatureFlagKey.PILOT_MODE, default_state=True)
        add_flag(FeatureFlagKey.MARKETING_VISIBLE, default_state=True, is_active=False)
        add_flag(FeatureFlagKey.BILLING_ENFORCEMENT, default_state=False)
        assert flags.get_feature_flags() == {
            "pilot_mode": True,
            "marketing_visible": False,
            "billing_enforcement": False,
        }

    def test_cached_until_invalidated(self, flags, add_flag):
        assert flags.is_feature_enabled(FeatureFlagKey.PILOT_MODE) is False
        add_flag(FeatureFlagKey.PILOT_MODE, default_state=True)
        # still within the staleness window
        assert flags.is_feature_enabled(FeatureFlagKey.PILOT_MODE) is False
        flags.invalidate(FeatureFlagKey.PILOT_MODE)
        assert flags.is_feature_enabled(FeatureFlagKey.PILOT_MODE) is True
