# Overview: Service-layer operations for sessions and principal resolution.

"""
Principal Resolution

WHY: Every inbound call is attributed to a Principal before any handler
runs. Two credential kinds are accepted:

- Authorization: Bearer <token>  -> a SessionToken row for a User
- X-API-Key: <key>               -> a Retailer or Company API key

SECURITY:
- Session tokens are 32 random bytes; only their SHA-256 hash is stored
- Sessions expire after SESSION_TTL_HOURS and can be revoked
- Inactive users, retailers and companies never resolve
- API-key principals only get API_KEY_CAPABILITIES, whatever their role

Issuing credentials interactively (login forms, password reset) is not part
of this service; sessions are issued by the CLI or by tests.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app

from ..models import Company, Retailer, SessionToken, User
from ..permissions import API_KEY_CAPABILITIES, ROLE_CAPABILITIES, Role
from ..time_utils import utcnow
from ..validation import NotFoundError
from . import audit_service, record_store


VIA_SESSION = "session"
VIA_API_KEY = "api_key"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, resolved once per request."""
    role: Role
    user_id: int | None = None
    company_id: int | None = None
    retailer_id: int | None = None
    via: str = VIA_SESSION
    capabilities: frozenset = field(default_factory=frozenset)

    @property
    def actor_id(self) -> str:
        """Value written to audit performed_by columns."""
        if self.user_id is not None:
            return str(self.user_id)
        return audit_service.SYSTEM_ACTOR

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "userId": self.user_id,
            "companyId": self.company_id,
            "retailerId": self.retailer_id,
            "via": self.via,
            "capabilities": sorted(self.capabilities),
        }


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_session(user_id: int, *, ttl_hours: int | None = None) -> tuple[SessionToken, str]:
    """
    Create a session for an active user.

    Returns (session_record, plaintext_token); only the hash is persisted.
    """
    user = record_store.find_by_id(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not user.is_active:
        raise ValueError("User is inactive")

    if ttl_hours is None:
        ttl_hours = current_app.config.get("SESSION_TTL_HOURS", 24)

    token = generate_token()
    now = utcnow()
    session = record_store.append(SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
    ))
    audit_service.session_opened(user.id)
    return session, token


def revoke_session(token: str) -> bool:
    session = record_store.find_one_by(SessionToken, token_hash=hash_token(token))
    if session is None or session.revoked_at is not None:
        return False
    record_store.update_by_id(SessionToken, session.id, {"revoked_at": utcnow()})
    audit_service.session_closed(session.user_id)
    return True


def validate_session(token: str) -> User | None:
    """Return the session's user, or None if the token is unknown, expired, revoked or the user inactive."""
    session = record_store.find_one_by(SessionToken, token_hash=hash_token(token))
    if session is None or session.revoked_at is not None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    user = record_store.find_by_id(User, session.user_id)
    if user is None or not user.is_active:
        return None

    record_store.update_by_id(SessionToken, session.id, {"last_used_at": now})
    return user


def principal_for_user(user: User) -> Principal:
    role = Role.parse(user.role)
    return Principal(
        role=role,
        user_id=user.id,
        company_id=user.company_id,
        retailer_id=user.retailer_id,
        via=VIA_SESSION,
        capabilities=ROLE_CAPABILITIES[role],
    )


def principal_for_api_key(api_key: str) -> Principal | None:
    retailer = record_store.find_one_by(Retailer, api_key=api_key)
    if retailer is not None:
        if not retailer.is_active:
            return None
        return Principal(
            role=Role.RETAILER_OPERATOR,
            retailer_id=retailer.id,
            via=VIA_API_KEY,
            capabilities=ROLE_CAPABILITIES[Role.RETAILER_OPERATOR] & API_KEY_CAPABILITIES,
        )

    company = record_store.find_one_by(Company, api_key=api_key)
    if company is not None:
        if not company.is_active:
            return None
        return Principal(
            role=Role.COMPANY_ADMIN,
            company_id=company.id,
            via=VIA_API_KEY,
            capabilities=ROLE_CAPABILITIES[Role.COMPANY_ADMIN] & API_KEY_CAPABILITIES,
        )
    return None


def resolve_principal(headers) -> Principal | None:
    """Resolve request headers to a Principal; a Bearer token wins over an API key."""
    auth_header = headers.get("Authorization") or ""
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        user = validate_session(token) if token else None
        return principal_for_user(user) if user is not None else None

    api_key = (headers.get("X-API-Key") or "").strip()
    if api_key:
        return principal_for_api_key(api_key)
    return None
