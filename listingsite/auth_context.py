"""
listingsite/auth_context.py

Authentication snapshot for guard evaluation.

Identity comes from the auth provider's JWT (bearer header or the
`access_token` cookie); roles and impersonation come from the tenant store.
A snapshot never raises: a bad token is anonymous, and a failed role read
leaves the role unresolved with the error recorded for the guard chain.

This module MUST NOT import listingsite.main to avoid circular dependencies.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import List, Optional

import jwt
from fastapi import HTTPException

from listingsite.config import ALGORITHM, IS_DEV, SECRET_KEY
from listingsite.db import db_connection
from listingsite.models import ImpersonationState
from listingsite.rbac import Role, highest_role


# ---------------------------------------------------------
# JWT Token Verification
# ---------------------------------------------------------
def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        HTTPException(401): If token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# ---------------------------------------------------------
# Snapshot
# ---------------------------------------------------------
@dataclass(frozen=True)
class AuthSnapshot:
    """
    What the guard chain knows about the caller at one point in time.

    Fields:
        loading: Provider still settling the session
        user_id: Subject claim, None when anonymous
        session_ready: Session token has propagated (session_id claim present)
        role: Highest platform role; None while unresolved
        role_error: Message from a failed role read, if any
        impersonation: Active impersonation session (super admins only)
    """
    loading: bool = False
    user_id: Optional[str] = None
    email: Optional[str] = None
    session_ready: bool = False
    role: Optional[str] = None
    role_error: Optional[str] = None
    impersonation: Optional[ImpersonationState] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN

    @property
    def is_impersonating(self) -> bool:
        return self.impersonation is not None

    @property
    def settling(self) -> bool:
        """Known to be signed in, but session or role not yet resolved."""
        if self.loading:
            return True
        if not self.authenticated:
            return False
        role_pending = self.role is None and self.role_error is None
        return role_pending or not self.session_ready


ANONYMOUS = AuthSnapshot()


# ---------------------------------------------------------
# Store reads
# ---------------------------------------------------------
def load_user_roles(user_id: str, db_path: Optional[str] = None) -> List[str]:
    """Return every role granted to a user. sqlite3 errors propagate."""
    with db_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT role FROM user_roles WHERE user_id = ?", (user_id,)
        ).fetchall()
    return [r["role"] for r in rows]


def load_active_impersonation(
    super_admin_id: str, db_path: Optional[str] = None
) -> Optional[ImpersonationState]:
    """Most recent open impersonation session started by a super admin."""
    try:
        with db_connection(db_path) as conn:
            row = conn.execute(
                """
                SELECT s.id, s.organization_id, s.reason, s.started_at,
                       o.slug, o.business_name
                FROM impersonation_sessions s
                LEFT JOIN organizations o ON o.id = s.organization_id
                WHERE s.super_admin_id = ? AND s.ended_at IS NULL
                ORDER BY s.started_at DESC
                LIMIT 1
                """,
                (super_admin_id,),
            ).fetchone()
    except sqlite3.Error as e:
        print(f"[AUTH] Impersonation lookup failed: {type(e).__name__}: {e}")
        return None

    if row is None:
        return None
    return ImpersonationState(
        session_id=row["id"],
        organization_id=row["organization_id"],
        organization_slug=row["slug"],
        organization_name=row["business_name"],
        started_at=row["started_at"],
        reason=row["reason"],
    )


def build_auth_snapshot(token: Optional[str], db_path: Optional[str] = None) -> AuthSnapshot:
    """
    Build the guard-facing snapshot for a raw token.

    Missing or invalid tokens yield an anonymous snapshot rather than an error;
    the guard chain turns that into a login redirect.
    """
    if not token:
        return ANONYMOUS
    try:
        payload = verify_token(token)
    except HTTPException as e:
        if IS_DEV:
            print(f"[AUTH] Treating request as anonymous: {e.detail}")
        return ANONYMOUS

    user_id = payload.get("sub")
    if user_id is None:
        return ANONYMOUS
    user_id = str(user_id)

    role: Optional[str] = None
    role_error: Optional[str] = None
    try:
        role = highest_role(load_user_roles(user_id, db_path))
    except sqlite3.Error as e:
        role_error = f"{type(e).__name__}: {e}"
        print(f"[AUTH] Role lookup failed for user {user_id}: {role_error}")

    impersonation = None
    if role == Role.SUPER_ADMIN:
        impersonation = load_active_impersonation(user_id, db_path)

    return AuthSnapshot(
        user_id=user_id,
        email=payload.get("email"),
        session_ready=bool(payload.get("session_id")),
        role=role,
        role_error=role_error,
        impersonation=impersonation,
    )
