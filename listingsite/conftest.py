"""
Shared pytest fixtures.

Points DATABASE_PATH at a throwaway SQLite file BEFORE any listingsite
module is imported, so the app and every store use the test database.
"""

import json
import os
import tempfile
import time

import jwt
import pytest

TEST_DB_PATH = tempfile.mktemp(suffix=".db")
os.environ["DATABASE_PATH"] = TEST_DB_PATH

from listingsite import dependencies  # noqa: E402
from listingsite.config import ALGORITHM, SECRET_KEY  # noqa: E402
from listingsite.db import db_connection, init_db  # noqa: E402

TABLES = [
    "organizations",
    "user_organizations",
    "user_roles",
    "impersonation_sessions",
    "feature_flags",
    "organization_site_copy",
    "credit_balances",
    "usage_rates",
]


@pytest.fixture
def db_path():
    """Fresh, empty tenant core tables for each test."""
    init_db()
    with db_connection() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")
        conn.commit()
    dependencies._flag_service = None
    dependencies._content_service = None
    yield TEST_DB_PATH


@pytest.fixture
def add_org(db_path):
    """Insert an organization row; returns its id."""
    def _add(org_id, slug, **fields):
        row = {
            "id": org_id,
            "slug": slug,
            "business_name": fields.pop("business_name", slug.title()),
            "is_active": 1,
            **fields,
        }
        if "property_services" in row and not isinstance(row["property_services"], str):
            row["property_services"] = json.dumps(row["property_services"])
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        with db_connection() as conn:
            conn.execute(f"INSERT INTO organizations ({cols}) VALUES ({marks})", tuple(row.values()))
            conn.commit()
        return org_id
    return _add


@pytest.fixture
def add_user(db_path):
    """Insert roles and organization memberships for a user id."""
    def _add(user_id, roles=(), organizations=()):
        with db_connection() as conn:
            for role in roles:
                conn.execute("INSERT INTO user_roles (user_id, role) VALUES (?, ?)", (user_id, role))
            for org_id in organizations:
                conn.execute(
                    "INSERT INTO user_organizations (user_id, organization_id) VALUES (?, ?)",
                    (user_id, org_id),
                )
            conn.commit()
        return user_id
    return _add


@pytest.fixture
def add_flag(db_path):
    def _add(key, default_state=True, is_active=True):
        with db_connection() as conn:
            conn.execute(
                "INSERT INTO feature_flags (key, name, default_state, is_active) VALUES (?, ?, ?, ?)",
                (key, key.replace("_", " ").title(), int(default_state), int(is_active)),
            )
            conn.commit()
    return _add


@pytest.fixture
def make_token():
    """Sign an access token the way the auth provider does."""
    def _make(user_id, session_id="sess-1", email=None, expires_in=900):
        payload = {"sub": user_id, "email": email or f"{user_id}@example.com", "exp": int(time.time()) + expires_in}
        if session_id:
            payload["session_id"] = session_id
        return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)
    return _make
