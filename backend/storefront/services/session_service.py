# Overview: Service-layer operations for sessions; opaque bearer tokens hashed at rest.

"""
Session Token Management Service

WHY: Routes need a caller identity (user id, phone, role) without a
protocol of their own. Tokens are random, only their SHA-256 hash is
stored (as the Sessions document id), and they expire after a fixed
absolute lifetime.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..errors import ValidationError
from storefront.time_utils import utcnow, parse_iso_datetime, to_utc_z
from . import document_store as store


ROLE_CUSTOMER = "Customers"
ROLE_STORE_MANAGER = "StoreManager"
ROLE_STORE_ADMIN = "StoreAdmins"
ROLE_ADMIN = "Admin"
ROLE_DRIVER = "Driver"

ROLES = frozenset({ROLE_CUSTOMER, ROLE_STORE_MANAGER, ROLE_STORE_ADMIN, ROLE_ADMIN, ROLE_DRIVER})


@dataclass
class SessionContext:
    """Identity established for one authenticated request."""
    user_id: str
    phone: str | None
    role: str
    session: dict


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _ttl() -> timedelta:
    return timedelta(hours=int(current_app.config.get("SESSION_TTL_HOURS", 24)))


def create_session(user_id: str, phone: str | None, role: str) -> tuple[dict, str]:
    """
    Create a session for a user. Returns (session_document, plaintext_token);
    only the hash of the token is stored.
    """
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")
    if not user_id:
        raise ValidationError("user id required")

    token = generate_token()
    now = utcnow()
    session = store.create(store.SESSIONS, {
        "id": hash_token(token),
        "userId": user_id,
        "phone": phone,
        "role": role,
        "createdOn": to_utc_z(now),
        "expiresOn": to_utc_z(now + _ttl()),
        "revoked": False,
    })
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """SessionContext for a live token; None when unknown, expired or revoked."""
    if not token:
        return None
    session = store.read_by_id(store.SESSIONS, hash_token(token))
    if session is None or session.get("revoked"):
        return None
    if parse_iso_datetime(session.get("expiresOn")) <= utcnow():
        return None
    return SessionContext(
        user_id=session["userId"],
        phone=session.get("phone"),
        role=session["role"],
        session=session,
    )


def revoke_session(token: str) -> bool:
    session = store.read_by_id(store.SESSIONS, hash_token(token))
    if session is None or session.get("revoked"):
        return False
    store.patch(store.SESSIONS, session["id"], {"revoked": True, "revokedOn": to_utc_z(utcnow())})
    return True
