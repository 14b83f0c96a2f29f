# Overview: Service-layer operations for retailers, companies and users; every mutation is audited.

"""
Directory administration

Plain create/update/list/get for the parties the verification engine reads.
Nothing here has interesting invariants beyond input validation, but every
mutation is recorded with the same audit action taxonomy as the core.

User balances are always returned through spend_ledger_service so listings
and lookups apply the same lazy reset as verification.
"""

from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Company, Retailer, User
from ..permissions import PermissionDeniedError, Role
from ..time_utils import utcnow
from ..validation import (
    MAX_SPENDING_LIMIT_CENTS,
    ConflictError,
    NotFoundError,
    ValidationError,
    cents_to_amount,
    normalize_webhook_url,
    parse_bool,
    parse_money,
    parse_name,
    parse_optional_id,
    require_payload,
)
from . import audit_service, record_store, spend_ledger_service
from .concurrency import run_with_retry, user_lock


COMPANY_ROLES = frozenset({Role.COMPANY_ADMIN, Role.COMPANY_MEMBER})


def generate_api_key(prefix: str) -> str:
    return f"{prefix}_{secrets.token_urlsafe(24)}"


def _snapshot(record) -> dict:
    return record.to_dict()


# ----------------------------------------------------------------------
# Retailers / companies
# ----------------------------------------------------------------------

_PARTY_AUDIT = {
    Retailer: ("retailer", "rk"),
    Company: ("company", "ck"),
}


def _party_label(model) -> str:
    return _PARTY_AUDIT[model][0]


def create_party(model, payload, performed_by):
    """Create a Retailer or Company; returns (record, plaintext api key)."""
    data = require_payload(payload)
    label, key_prefix = _PARTY_AUDIT[model]
    name = parse_name(data.get("name"), "name")
    webhook_url = normalize_webhook_url(data.get("webhookUrl"))

    now = utcnow()
    record = record_store.append(model(
        name=name,
        api_key=generate_api_key(key_prefix),
        webhook_url=webhook_url,
        is_active=True,
        created_at=now,
        updated_at=now,
    ))
    audit_service.record(f"{label}.created", performed_by, label, record.id, after=_snapshot(record))
    if webhook_url and model is Company:
        audit_service.company_webhook_registered(performed_by, record.id, webhook_url)
    current_app.logger.info("%s %s created: %s", label.capitalize(), record.id, name)
    return record, record.api_key


def update_party(model, record_id: int, payload, performed_by):
    data = require_payload(payload)
    label = _party_label(model)
    record = record_store.find_by_id(model, record_id)
    if record is None:
        raise NotFoundError(f"{label.capitalize()} not found")

    changes = {}
    if "name" in data:
        changes["name"] = parse_name(data.get("name"), "name")
    if "webhookUrl" in data:
        changes["webhook_url"] = normalize_webhook_url(data.get("webhookUrl"))
    if "isActive" in data:
        changes["is_active"] = parse_bool(data.get("isActive"), "isActive")
    if not changes:
        raise ValidationError("No updatable fields provided")

    before = _snapshot(record)
    webhook_changed = "webhook_url" in changes and changes["webhook_url"] != record.webhook_url
    changes["updated_at"] = utcnow()
    record = record_store.update_by_id(model, record_id, changes)

    audit_service.record(f"{label}.updated", performed_by, label, record.id, before=before, after=_snapshot(record))
    if webhook_changed and model is Company:
        audit_service.company_webhook_registered(performed_by, record.id, record.webhook_url)
    return record


def regenerate_api_key(model, record_id: int, performed_by):
    """Replace the entity's API key; the old key stops resolving immediately."""
    label, key_prefix = _PARTY_AUDIT[model]
    record = record_store.find_by_id(model, record_id)
    if record is None:
        raise NotFoundError(f"{label.capitalize()} not found")

    record = record_store.update_by_id(model, record_id, {
        "api_key": generate_api_key(key_prefix),
        "updated_at": utcnow(),
    })
    if model is Company:
        audit_service.company_apikey_regenerated(performed_by, record.id)
    else:
        audit_service.record(
            "retailer.updated", performed_by, "retailer", record.id,
            metadata={"apiKeyRegenerated": True},
        )
    return record, record.api_key


def list_parties(model, *, active_only: bool = False):
    filters = {"is_active": True} if active_only else {}
    return record_store.find_all_by(model, order_by=model.name.asc(), **filters)


def get_party(model, record_id: int):
    return record_store.find_by_id(model, record_id)


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------

def _parse_role(value) -> Role:
    if value is None:
        raise ValidationError("role is required")
    try:
        return Role.parse(value)
    except ValueError as exc:
        raise ValidationError(str(exc))


def _check_membership(role: Role, company_id: int | None, retailer_id: int | None) -> None:
    if role in COMPANY_ROLES:
        if company_id is None:
            raise ValidationError("companyId is required for company roles")
        if record_store.find_by_id(Company, company_id) is None:
            raise NotFoundError("Company not found")
        if retailer_id is not None:
            raise ValidationError("Company users cannot belong to a retailer")
    elif role == Role.RETAILER_OPERATOR:
        if retailer_id is None:
            raise ValidationError("retailerId is required for retailer operators")
        if record_store.find_by_id(Retailer, retailer_id) is None:
            raise NotFoundError("Retailer not found")
        if company_id is not None:
            raise ValidationError("Retailer operators cannot belong to a company")
    elif company_id is not None or retailer_id is not None:
        raise ValidationError("Platform operators cannot belong to a company or retailer")


def ensure_can_manage_user(principal, role: Role, company_id: int | None) -> None:
    """Company admins manage members of their own company only."""
    if principal.role == Role.PLATFORM_OPERATOR:
        return
    if principal.role == Role.COMPANY_ADMIN and role in COMPANY_ROLES and company_id == principal.company_id:
        return
    raise PermissionDeniedError("You can only manage users in your own company")


def can_view_user(principal, user: User) -> bool:
    if principal.role == Role.PLATFORM_OPERATOR:
        return True
    if principal.role == Role.RETAILER_OPERATOR:
        return user.retailer_id == principal.retailer_id
    return user.company_id is not None and user.company_id == principal.company_id


def _normalize_email(value) -> str:
    email = parse_name(value, "email").lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("email must be a valid email address")
    return email


def create_user(principal, payload) -> User:
    data = require_payload(payload)
    email = _normalize_email(data.get("email"))
    role = _parse_role(data.get("role", Role.COMPANY_MEMBER.value))
    company_id = parse_optional_id(data.get("companyId"), "companyId")
    retailer_id = parse_optional_id(data.get("retailerId"), "retailerId")
    ensure_can_manage_user(principal, role, company_id)
    _check_membership(role, company_id, retailer_id)

    limit = data.get("spendingLimit", 0)
    limit_cents = parse_money(limit, "spendingLimit", allow_zero=True, max_cents=MAX_SPENDING_LIMIT_CENTS)

    if record_store.find_one_by(User, email=email) is not None:
        raise ConflictError("A user with this email already exists")

    now = utcnow()
    try:
        user = record_store.append(User(
            email=email,
            first_name=(data.get("firstName") or "").strip(),
            last_name=(data.get("lastName") or "").strip(),
            company_id=company_id,
            retailer_id=retailer_id,
            role=role.value,
            spending_limit_cents=limit_cents,
            spent_this_month_cents=0,
            last_reset_at=now,
            is_active=True,
            created_at=now,
        ))
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A user with this email already exists")

    audit_service.user_created(principal.actor_id, user.id, _snapshot(user))
    if company_id is not None:
        audit_service.user_added_to_company(principal.actor_id, user.id, company_id)
    return user


def update_user(principal, user_id: int, payload) -> User:
    data = require_payload(payload)
    user = record_store.find_by_id(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    ensure_can_manage_user(principal, Role.parse(user.role), user.company_id)

    role = _parse_role(data["role"]) if "role" in data else Role.parse(user.role)
    company_id = parse_optional_id(data.get("companyId"), "companyId") if "companyId" in data else user.company_id
    retailer_id = parse_optional_id(data.get("retailerId"), "retailerId") if "retailerId" in data else user.retailer_id
    ensure_can_manage_user(principal, role, company_id)
    _check_membership(role, company_id, retailer_id)

    changes = {}
    if "firstName" in data:
        changes["first_name"] = (data.get("firstName") or "").strip()
    if "lastName" in data:
        changes["last_name"] = (data.get("lastName") or "").strip()
    if "isActive" in data:
        changes["is_active"] = parse_bool(data.get("isActive"), "isActive")
    if "spendingLimit" in data:
        changes["spending_limit_cents"] = parse_money(data.get("spendingLimit"), "spendingLimit", allow_zero=True, max_cents=MAX_SPENDING_LIMIT_CENTS)
    if role.value != user.role:
        changes["role"] = role.value
    if company_id != user.company_id:
        changes["company_id"] = company_id
    if retailer_id != user.retailer_id:
        changes["retailer_id"] = retailer_id
    if not changes:
        return spend_ledger_service.refresh_user_balance(user)

    before = _snapshot(user)
    old_role, old_limit, old_company = user.role, user.spending_limit_cents, user.company_id
    changes["updated_at"] = utcnow()

    def _apply() -> User:
        return record_store.update_by_id(User, user_id, changes)

    with user_lock(user_id):
        user = run_with_retry(_apply)

    actor = principal.actor_id
    audit_service.user_updated(actor, user.id, before, _snapshot(user))
    if "role" in changes:
        audit_service.user_role_changed(actor, user.id, old_role, user.role)
    if "spending_limit_cents" in changes and changes["spending_limit_cents"] != old_limit:
        audit_service.user_limit_changed(actor, user.id, cents_to_amount(old_limit), cents_to_amount(user.spending_limit_cents))
    if "company_id" in changes:
        if old_company is not None:
            audit_service.user_removed_from_company(actor, user.id, old_company)
        if user.company_id is not None:
            audit_service.user_added_to_company(actor, user.id, user.company_id)
    return spend_ledger_service.refresh_user_balance(user)


def get_user(user_id: int) -> User | None:
    user = record_store.find_by_id(User, user_id)
    if user is None:
        return None
    return spend_ledger_service.refresh_user_balance(user)


def list_users(*, company_id: int | None = None, retailer_id: int | None = None) -> list[User]:
    filters = {}
    if company_id is not None:
        filters["company_id"] = company_id
    if retailer_id is not None:
        filters["retailer_id"] = retailer_id
    users = record_store.find_all_by(User, order_by=User.id.asc(), **filters)
    return spend_ledger_service.refresh_users(users)
