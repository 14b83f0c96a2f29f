# Overview: Service-layer operations for the append-only audit trail.

"""
Audit Recorder

WHY: Every state change leaves exactly one immutable AuditEntry. An
unaudited mutation is worse than a failed request, so persistence errors
from record() propagate to the caller instead of being logged and ignored.

performed_by is the acting user's id as a string, or "system" for changes
nobody asked for (the lazy monthly reset).
"""

from __future__ import annotations

from flask import current_app

from ..models import AuditEntry
from ..time_utils import utcnow
from . import record_store


SYSTEM_ACTOR = "system"

AUDIT_ACTIONS = frozenset({
    "company.created",
    "company.updated",
    "company.deleted",
    "company.apikey.regenerated",
    "company.webhook.registered",
    "company.disconnect.requested",
    "company.disconnect.approved",
    "company.disconnect.rejected",
    "company.retailer.linked",
    "company.retailer.unlinked",
    "retailer.created",
    "retailer.updated",
    "retailer.deleted",
    "user.created",
    "user.updated",
    "user.deleted",
    "user.role.changed",
    "user.limit.changed",
    "user.added_to_company",
    "user.removed_from_company",
    "purchase.verified",
    "purchase.approved",
    "purchase.denied",
    "auth.login",
    "auth.logout",
    "monthly.reset",
})

TARGET_TYPES = frozenset({
    "company",
    "user",
    "transaction",
    "system",
    "retailer",
    "disconnect_request",
    "link",
})

DEFAULT_RECENT_COUNT = 50
MAX_PAGE_SIZE = 500


def record(
    action: str,
    performed_by,
    target_type: str,
    target_id,
    before: dict | None = None,
    after: dict | None = None,
    metadata: dict | None = None,
) -> AuditEntry:
    """
    Append one audit entry and commit it.

    Raises ValueError for actions or target types outside the closed sets.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    if target_type not in TARGET_TYPES:
        raise ValueError(f"Unknown audit target type: {target_type}")

    entry = AuditEntry(
        timestamp=utcnow(),
        action=action,
        performed_by=str(performed_by if performed_by is not None else SYSTEM_ACTOR),
        target_type=target_type,
        target_id=str(target_id),
        before_state=before,
        after_state=after,
        extra=metadata,
    )
    record_store.append(entry)
    current_app.logger.debug(
        "Audit: %s by %s on %s:%s", action, entry.performed_by, target_type, entry.target_id
    )
    return entry


# ----------------------------------------------------------------------
# Queries (newest first)
# ----------------------------------------------------------------------

def _newest_first():
    return (AuditEntry.timestamp.desc(), AuditEntry.id.desc())


def entries_for_target(target_type: str, target_id) -> list[AuditEntry]:
    return record_store.find_all_by(
        AuditEntry,
        target_type=target_type,
        target_id=str(target_id),
        order_by=_newest_first(),
    )


def entries_by_user(user_id) -> list[AuditEntry]:
    return record_store.find_all_by(
        AuditEntry,
        performed_by=str(user_id),
        order_by=_newest_first(),
    )


def entries_by_action(action: str) -> list[AuditEntry]:
    return record_store.find_all_by(AuditEntry, action=action, order_by=_newest_first())


def recent_entries(count: int = DEFAULT_RECENT_COUNT) -> list[AuditEntry]:
    count = max(0, min(int(count), MAX_PAGE_SIZE))
    return record_store.find_all_by(AuditEntry, order_by=_newest_first(), limit=count)


def list_entries(limit: int = 100, offset: int = 0) -> tuple[list[AuditEntry], int]:
    """Offset/limit page of the whole trail plus the total entry count."""
    limit = max(0, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))
    entries = record_store.find_all_by(
        AuditEntry,
        order_by=_newest_first(),
        limit=limit,
        offset=offset,
    )
    return entries, record_store.count_by(AuditEntry)


# ----------------------------------------------------------------------
# Convenience recorders
# ----------------------------------------------------------------------

def company_apikey_regenerated(performed_by, company_id) -> AuditEntry:
    return record("company.apikey.regenerated", performed_by, "company", company_id)


def company_webhook_registered(performed_by, company_id, webhook_url: str | None) -> AuditEntry:
    return record(
        "company.webhook.registered", performed_by, "company", company_id,
        after={"webhookUrl": webhook_url},
    )


def link_created(performed_by, link, *, reactivated: bool) -> AuditEntry:
    return record(
        "company.retailer.linked", performed_by, "link", link.id,
        after=link.to_dict(),
        metadata={
            "companyId": link.company_id,
            "retailerId": link.retailer_id,
            "reactivated": reactivated,
        },
    )


def link_deactivated(performed_by, link, before: dict, *, via: str) -> AuditEntry:
    return record(
        "company.retailer.unlinked", performed_by, "link", link.id,
        before=before,
        after=link.to_dict(),
        metadata={"companyId": link.company_id, "retailerId": link.retailer_id, "via": via},
    )


def disconnect_requested(performed_by, request) -> AuditEntry:
    return record(
        "company.disconnect.requested", performed_by, "disconnect_request", request.id,
        after=request.to_dict(),
        metadata={"companyId": request.company_id, "retailerId": request.retailer_id},
    )


def disconnect_processed(performed_by, request, before: dict, *, link_deactivated: bool | None = None) -> AuditEntry:
    metadata = {"companyId": request.company_id, "retailerId": request.retailer_id}
    if link_deactivated is not None:
        metadata["linkDeactivated"] = link_deactivated
    return record(
        f"company.disconnect.{request.status}", performed_by, "disconnect_request", request.id,
        before=before,
        after=request.to_dict(),
        metadata=metadata,
    )


def user_created(performed_by, user_id, after: dict) -> AuditEntry:
    return record("user.created", performed_by, "user", user_id, after=after)


def user_updated(performed_by, user_id, before: dict, after: dict) -> AuditEntry:
    return record("user.updated", performed_by, "user", user_id, before=before, after=after)


def user_role_changed(performed_by, user_id, old_role: str, new_role: str) -> AuditEntry:
    return record(
        "user.role.changed", performed_by, "user", user_id,
        before={"role": old_role}, after={"role": new_role},
    )


def user_limit_changed(performed_by, user_id, old_limit, new_limit) -> AuditEntry:
    return record(
        "user.limit.changed", performed_by, "user", user_id,
        before={"spendingLimit": old_limit}, after={"spendingLimit": new_limit},
    )


def user_added_to_company(performed_by, user_id, company_id) -> AuditEntry:
    return record("user.added_to_company", performed_by, "user", user_id, metadata={"companyId": company_id})


def user_removed_from_company(performed_by, user_id, company_id) -> AuditEntry:
    return record("user.removed_from_company", performed_by, "user", user_id, metadata={"companyId": company_id})


def purchase_approved(performed_by, transaction, *, verified_by: str | None = None) -> AuditEntry:
    metadata = {
        "amount": transaction.to_dict()["amount"],
        "retailerId": transaction.retailer_id,
        "companyId": transaction.company_id,
    }
    if verified_by is not None:
        metadata["verifiedBy"] = verified_by
    return record(
        "purchase.approved", performed_by, "transaction", transaction.id,
        before={"spentThisMonth": transaction.to_dict()["balanceBefore"]},
        after={"spentThisMonth": transaction.to_dict()["balanceAfter"]},
        metadata=metadata,
    )


def purchase_denied(performed_by, transaction, *, verified_by: str | None = None) -> AuditEntry:
    metadata = {
        "amount": transaction.to_dict()["amount"],
        "reason": transaction.denial_reason,
        "retailerId": transaction.retailer_id,
        "companyId": transaction.company_id,
    }
    if verified_by is not None:
        metadata["verifiedBy"] = verified_by
    return record("purchase.denied", performed_by, "transaction", transaction.id, metadata=metadata)


def session_opened(user_id) -> AuditEntry:
    return record("auth.login", user_id, "user", user_id)


def session_closed(user_id) -> AuditEntry:
    return record("auth.logout", user_id, "user", user_id)


def monthly_reset(user_id, previous_spent, reset_at: str | None = None) -> AuditEntry:
    return record(
        "monthly.reset", SYSTEM_ACTOR, "user", user_id,
        before={"spentThisMonth": previous_spent},
        after={"spentThisMonth": 0},
        metadata={"resetAt": reset_at} if reset_at else None,
    )
