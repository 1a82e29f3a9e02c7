"""
listingsite/test_guards.py

Route guard chain ordering and the tri-state role handling.

Run:
    pytest listingsite/test_guards.py -v
"""

import sqlite3
from unittest.mock import patch

import pytest

from listingsite.auth_context import ANONYMOUS, AuthSnapshot, build_auth_snapshot
from listingsite.guards import (
    GuardOutcome,
    GuardState,
    PRIVATE_BETA_VIEW,
    RouteAccess,
    RouteRequirement,
    evaluate_guard,
    is_transient_auth_error,
    login_redirect,
)
from listingsite.models import ImpersonationState, Organization
from listingsite.rbac import (
    Permission,
    Role,
    RoleState,
    has_permission,
    highest_role,
    super_admin_only_state,
    super_admin_portal_state,
)

ADMIN = RouteRequirement(RouteAccess.ADMIN)
PILOT = RouteRequirement(RouteAccess.ADMIN, pilot_gated=True)
PORTAL = RouteRequirement(RouteAccess.SUPER_ADMIN_PORTAL, fallback_path="/admin/listings")
ONLY = RouteRequirement(RouteAccess.SUPER_ADMIN_ONLY)

IMPERSONATION = ImpersonationState(session_id="s1", organization_id="org-b")


def signed_in(role="admin", **kw):
    return AuthSnapshot(user_id="u1", session_ready=True, role=role, **kw)


def org(comped=False):
    return Organization(id="org-a", slug="alpha", business_name="Alpha", is_comped=comped)


class TestGuardOrdering:
    """The first failing step wins, and loading beats everything."""

    def test_loading_beats_every_redirect(self):
        state = GuardState(
            auth=AuthSnapshot(loading=True, impersonation=IMPERSONATION),
            organization=None,
            organization_loading=True,
            pilot_mode=True,
            role_check_error="403 Unauthorized",
        )
        for requirement in (ADMIN, PILOT, PORTAL, ONLY):
            decision = evaluate_guard(requirement, state, "/internal/billing", "tab=refunds")
            assert decision.outcome is GuardOutcome.LOADING
            assert decision.location is None

    def test_unauthenticated_after_loading_settles(self):
        state = GuardState(auth=ANONYMOUS, pilot_mode=True)
        decision = evaluate_guard(ONLY, state, "/internal/billing", "tab=refunds&q=a b")
        assert decision.outcome is GuardOutcome.REDIRECT
        assert decision.location == "/admin/login?returnUrl=%2Finternal%2Fbilling%3Ftab%3Drefunds%26q%3Da%20b"

    def test_session_not_ready_is_loading(self):
        state = GuardState(auth=AuthSnapshot(user_id="u1", session_ready=False, role=Role.SUPER_ADMIN))
        assert evaluate_guard(PORTAL, state, "/internal").outcome is GuardOutcome.LOADING

    def test_unknown_role_is_loading_not_denied(self):
        state = GuardState(auth=AuthSnapshot(user_id="u1", session_ready=True, role=None))
        decision = evaluate_guard(PORTAL, state, "/internal")
        assert decision.outcome is GuardOutcome.LOADING

    def test_pilot_flag_unresolved_is_loading(self):
        state = GuardState(auth=signed_in(), organization=org(), pilot_mode=None)
        assert evaluate_guard(PILOT, state, "/admin/listings").outcome is GuardOutcome.LOADING
        # ungated routes do not wait on the flag
        assert evaluate_guard(ADMIN, state, "/admin/listings").outcome is GuardOutcome.ALLOW


class TestImpersonation:
    def test_blocks_super_admin_routes(self):
        state = GuardState(auth=signed_in(Role.SUPER_ADMIN, impersonation=IMPERSONATION))
        for requirement in (PORTAL, ONLY):
            decision = evaluate_guard(requirement, state, "/internal")
            assert decision.outcome is GuardOutcome.REDIRECT
            assert decision.location == "/admin/listings"

    def test_allows_admin_routes(self):
        state = GuardState(auth=signed_in(Role.SUPER_ADMIN, impersonation=IMPERSONATION))
        assert evaluate_guard(ADMIN, state, "/admin/listings").allowed


class TestRoles:
    def test_portal_admits_developers(self):
        state = GuardState(auth=signed_in(Role.DEVELOPER))
        assert evaluate_guard(PORTAL, state, "/internal").allowed

    def test_super_admin_only_rejects_developers_to_fallback(self):
        state = GuardState(auth=signed_in(Role.DEVELOPER))
        decision = evaluate_guard(ONLY, state, "/internal/billing")
        assert decision.location == "/internal"

    def test_org_admin_redirected_to_route_fallback(self):
        state = GuardState(auth=signed_in(Role.ADMIN))
        assert evaluate_guard(PORTAL, state, "/internal").location == "/admin/listings"
        assert evaluate_guard(ONLY, state, "/internal/billing").location == "/internal"

    @pytest.mark.parametrize("error", ["401", "HTTP 403", "Unauthorized"])
    def test_transient_auth_error_goes_to_listings(self, error):
        state = GuardState(auth=signed_in(Role.SUPER_ADMIN), role_check_error=error)
        assert evaluate_guard(ONLY, state, "/internal/billing").location == "/admin/listings"

    def test_other_role_error_goes_to_fallback(self):
        state = GuardState(auth=signed_in(None, role_error="OperationalError: database is locked"))
        decision = evaluate_guard(ONLY, state, "/internal/billing")
        assert decision.outcome is GuardOutcome.REDIRECT
        assert decision.location == "/internal"

    def test_is_transient_auth_error(self):
        assert is_transient_auth_error("Request failed with 401")
        assert not is_transient_auth_error("timeout")
        assert not is_transient_auth_error(None)


class TestPilotGate:
    def test_flag_off_allows_everyone(self):
        state = GuardState(auth=signed_in(Role.USER), organization=None, pilot_mode=False)
        assert evaluate_guard(PILOT, state, "/admin/listings").allowed

    def test_super_admin_and_impersonation_bypass(self):
        state = GuardState(auth=signed_in(Role.SUPER_ADMIN), organization=org(), pilot_mode=True)
        assert evaluate_guard(PILOT, state, "/admin/listings").allowed
        state = GuardState(auth=signed_in(Role.ADMIN, impersonation=IMPERSONATION), organization=None, pilot_mode=True)
        assert evaluate_guard(PILOT, state, "/admin/listings").allowed

    def test_no_organization_goes_to_marketing(self):
        state = GuardState(auth=signed_in(), organization=None, pilot_mode=True)
        decision = evaluate_guard(PILOT, state, "/admin/listings")
        assert decision.location == "/marketing"

    def test_not_comped_gets_private_beta_notice(self):
        state = GuardState(auth=signed_in(), organization=org(comped=False), pilot_mode=True)
        decision = evaluate_guard(PILOT, state, "/admin/listings")
        assert decision.outcome is GuardOutcome.DENY
        assert decision.view == PRIVATE_BETA_VIEW
        assert "private beta" in decision.message
        assert decision.location is None

    def test_comped_allowed(self):
        state = GuardState(auth=signed_in(), organization=org(comped=True), pilot_mode=True)
        assert evaluate_guard(PILOT, state, "/admin/listings").allowed


class TestLoginRedirect:
    def test_encodes_like_encode_uri_component(self):
        assert login_redirect("/admin/leads", "?id=5&tab=notes") == \
            "/admin/login?returnUrl=%2Fadmin%2Fleads%3Fid%3D5%26tab%3Dnotes"
        assert login_redirect("/admin/a(b)!", "") == "/admin/login?returnUrl=%2Fadmin%2Fa(b)!"


class TestRbac:
    def test_highest_role(self):
        assert highest_role(["user", "developer", "admin"]) == Role.DEVELOPER
        assert highest_role(["admin", "super_admin"]) == Role.SUPER_ADMIN
        assert highest_role([]) == Role.USER

    def test_tri_state(self):
        assert super_admin_portal_state(None) is RoleState.UNKNOWN
        assert super_admin_portal_state(Role.DEVELOPER) is RoleState.GRANTED
        assert super_admin_portal_state(Role.ADMIN) is RoleState.DENIED
        assert super_admin_only_state(Role.DEVELOPER) is RoleState.DENIED

    def test_developer_permissions_are_a_subset(self):
        assert has_permission(Role.DEVELOPER, Permission.MANAGE_FEATURE_FLAGS)
        assert not has_permission(Role.DEVELOPER, Permission.PROCESS_REFUNDS)
        assert has_permission(Role.SUPER_ADMIN, Permission.EXTEND_TRIAL)
        assert not has_permission(None, Permission.VIEW_DASHBOARDS)


class TestBuildAuthSnapshot:
    def test_missing_and_invalid_tokens_are_anonymous(self, db_path):
        assert build_auth_snapshot(None) == ANONYMOUS
        assert build_auth_snapshot("garbage").authenticated is False

    def test_expired_token_is_anonymous(self, db_path, make_token):
        assert not build_auth_snapshot(make_token("u1", expires_in=-60)).authenticated

    def test_roles_and_session(self, db_path, add_user, make_token):
        add_user("u1", roles=["admin", "developer"])
        snap = build_auth_snapshot(make_token("u1"))
        assert snap.role == Role.DEVELOPER
        assert snap.session_ready
        assert not snap.settling

    def test_missing_session_claim_keeps_settling(self, db_path, add_user, make_token):
        add_user("u1", roles=["admin"])
        snap = build_auth_snapshot(make_token("u1", session_id=None))
        assert snap.settling

    def test_role_read_failure_leaves_role_unresolved(self, db_path, make_token):
        with patch("listingsite.auth_context.load_user_roles", side_effect=sqlite3.OperationalError("locked")):
            snap = build_auth_snapshot(make_token("u1"))
        assert snap.role is None
        assert "locked" in snap.role_error

    def test_super_admin_impersonation_loaded(self, db_path, add_org, add_user, make_token):
        add_org("org-b", "bravo", business_name="Bravo Lettings")
        add_user("boss", roles=["super_admin"])
        from listingsite.db import db_connection
        with db_connection() as conn:
            conn.execute(
                "INSERT INTO impersonation_sessions (id, super_admin_id, organization_id, reason) VALUES (?, ?, ?, ?)",
                ("imp-1", "boss", "org-b", "support ticket"),
            )
            conn.commit()
        snap = build_auth_snapshot(make_token("boss"))
        assert snap.is_impersonating
        assert snap.impersonation.organization_slug == "bravo"
        assert snap.impersonation.organization_name == "Bravo Lettings"
