"""
listingsite/db.py

SQLite access layer for the tenant core.

The hosted tenant store is reached through plain sqlite3 connections with a
Row factory. Every table here is the minimum needed by the resolver, guard
chain and override layer; the rest of the product schema lives elsewhere.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path as FsPath
from typing import Any, Dict, Iterator, List, Optional

from listingsite.config import DATABASE_PATH

DB_PATH = str(FsPath(__file__).resolve().parent / DATABASE_PATH)


# ---------------------------------------------------------
# Connections
# ---------------------------------------------------------
def get_db(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Create and return a SQLite connection with Row factory."""
    conn = sqlite3.connect(db_path or DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def db_connection(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Context manager that always closes the connection."""
    conn = get_db(db_path)
    try:
        yield conn
    finally:
        conn.close()


def row_to_dict(row) -> dict:
    """
    Safely convert a sqlite3.Row to dict.

    This is the single boundary for converting DB rows to dicts.
    Returns {} for None.
    """
    if row is None:
        return {}
    return dict(row)


# ---------------------------------------------------------
# Schema
# ---------------------------------------------------------
SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id TEXT PRIMARY KEY,
        slug TEXT UNIQUE NOT NULL,
        business_name TEXT NOT NULL,
        domain TEXT,
        logo_url TEXT,
        favicon_url TEXT,
        primary_color TEXT,
        secondary_color TEXT,
        contact_name TEXT,
        contact_email TEXT,
        contact_phone TEXT,
        business_address TEXT,
        is_active INTEGER DEFAULT 1,
        is_comped INTEGER DEFAULT 0,
        hide_public_site INTEGER DEFAULT 0,
        property_services TEXT DEFAULT '["sales"]',
        account_status TEXT DEFAULT 'trial',
        credit_spending_enabled INTEGER DEFAULT 0,
        trial_ends_at TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_organizations_domain ON organizations(domain)",
    """
    CREATE TABLE IF NOT EXISTS user_organizations (
        user_id TEXT NOT NULL,
        organization_id TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (user_id, organization_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        user_id TEXT NOT NULL,
        role TEXT NOT NULL,
        PRIMARY KEY (user_id, role)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS impersonation_sessions (
        id TEXT PRIMARY KEY,
        super_admin_id TEXT NOT NULL,
        organization_id TEXT NOT NULL,
        reason TEXT,
        started_at TEXT DEFAULT CURRENT_TIMESTAMP,
        ended_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feature_flags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        key TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        flag_type TEXT DEFAULT 'boolean',
        default_state INTEGER DEFAULT 0,
        is_active INTEGER DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS organization_site_copy (
        organization_id TEXT NOT NULL,
        locale TEXT NOT NULL,
        copy_key TEXT NOT NULL,
        copy_value TEXT,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (organization_id, locale, copy_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_balances (
        organization_id TEXT PRIMARY KEY,
        balance REAL NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_rates (
        feature_type TEXT PRIMARY KEY,
        credits_per_use REAL NOT NULL,
        is_active INTEGER DEFAULT 1
    )
    """,
]


def init_db(db_path: Optional[str] = None) -> None:
    """Create the tenant core tables if they do not exist."""
    with db_connection(db_path) as conn:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()
    print(f"[DB] Ensured tenant core tables at {db_path or DB_PATH}")


# ---------------------------------------------------------
# Stored-procedure equivalents
# ---------------------------------------------------------
def get_organization_site_copy(
    conn: sqlite3.Connection, organization_id: str, locale: str
) -> List[Dict[str, Any]]:
    """Return the (copy_key, copy_value) rows an organization stored for a locale."""
    rows = conn.execute(
        """
        SELECT copy_key, copy_value
        FROM organization_site_copy
        WHERE organization_id = ? AND locale = ?
        """,
        (organization_id, locale),
    ).fetchall()
    return [row_to_dict(r) for r in rows]


def encode_services(services: List[str]) -> str:
    return json.dumps(list(services))


def decode_services(raw: Any) -> List[str]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return [part.strip() for part in str(raw).split(",") if part.strip()]
    return list(value) if isinstance(value, list) else []
