# Overview: Service-layer operations for purchase verification; the decision pipeline.

"""
Purchase Verification Engine

Pipeline (short-circuits on the first failure):
1. retailer exists            -> retailer_not_found
2. company exists             -> company_not_found
3. active company/retailer link -> not_linked
4. company active             -> company_inactive
5. user exists                -> user_not_found
6. user belongs to company    -> insufficient_permissions
7. user active                -> user_inactive
8. lazy reset + global spend (under the per-user lock)
9. spend + amount > limit     -> limit_exceeded
10. approve

EVERY attempt writes exactly one Transaction and then one AuditEntry, in
that order. Denials are results, never exceptions. Webhooks are queued after
both writes and never affect the response.

CONCURRENCY: Steps 8-10 run under the user's keyed lock and are retried on
optimistic-lock conflicts of the User row, so two approvals for the same user
can never both pass the limit check against the same spend.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db, webhooks
from ..models import Company, Retailer, Transaction, User
from ..models.ledger import TRANSACTION_APPROVED, TRANSACTION_DENIED
from ..permissions import PermissionDeniedError, Role
from ..time_utils import utcnow
from ..validation import ValidationError, cents_to_amount, parse_id, parse_money, require_payload
from . import audit_service, link_service, record_store, spend_ledger_service
from .concurrency import run_with_retry, user_lock
from .webhook_service import EVENT_LIMIT_EXCEEDED, EVENT_PURCHASE_APPROVED, EVENT_PURCHASE_DENIED


NOT_FOUND_REASONS = frozenset({
    "retailer_not_found",
    "company_not_found",
    "user_not_found",
})


@dataclass(frozen=True)
class PurchaseRequest:
    user_id: int
    company_id: int
    retailer_id: int
    amount_cents: int


def parse_request(payload) -> PurchaseRequest:
    """
    Validate a verification body.

    Raises ValidationError before anything is written.
    """
    data = require_payload(payload)
    missing = [key for key in ("userId", "companyId", "retailerId", "amount") if data.get(key) is None]
    if missing:
        raise ValidationError("userId, companyId, retailerId, and amount are required")
    return PurchaseRequest(
        user_id=parse_id(data.get("userId"), "userId"),
        company_id=parse_id(data.get("companyId"), "companyId"),
        retailer_id=parse_id(data.get("retailerId"), "retailerId"),
        amount_cents=parse_money(data.get("amount"), "amount"),
    )


@dataclass
class VerificationResult:
    transaction: Transaction
    reason: str | None = None
    spent_cents: int | None = None
    limit_cents: int | None = None

    @property
    def status(self) -> str:
        return self.transaction.status

    @property
    def approved(self) -> bool:
        return self.transaction.is_approved

    @property
    def remaining_cents(self) -> int | None:
        if self.spent_cents is None or self.limit_cents is None:
            return None
        return spend_ledger_service.remaining_budget(self.limit_cents, self.spent_cents)

    @property
    def http_status(self) -> int:
        if self.approved:
            return 200
        if self.reason in NOT_FOUND_REASONS:
            return 404
        return 403

    def _budget(self) -> dict:
        return {
            "spentThisMonth": cents_to_amount(self.spent_cents),
            "spendingLimit": cents_to_amount(self.limit_cents),
            "remainingBudget": cents_to_amount(self.remaining_cents),
        }

    def to_response(self) -> dict:
        if self.approved:
            body = {
                "transactionId": self.transaction.id,
                "status": TRANSACTION_APPROVED,
                "amount": cents_to_amount(self.transaction.amount_cents),
            }
            body.update(self._budget())
            return body

        body = {
            "transactionId": self.transaction.id,
            "status": TRANSACTION_DENIED,
            "reason": self.reason,
        }
        if self.reason == "limit_exceeded":
            body.update(self._budget())
        return body


def authorize_verifier(principal, purchase: PurchaseRequest) -> None:
    """
    Retailer operators and retailer API keys verify only at their own retailer.

    Raises PermissionDeniedError; nothing is recorded for a refused caller.
    """
    if principal.role == Role.RETAILER_OPERATOR and principal.retailer_id != purchase.retailer_id:
        raise PermissionDeniedError("Cannot verify purchases for another retailer")


def verify_purchase(purchase: PurchaseRequest, *, verified_by: str = audit_service.SYSTEM_ACTOR, now: datetime | None = None) -> VerificationResult:
    """
    Run the decision pipeline for one purchase attempt.

    now defaults to the current UTC time and decides both the month used for
    global spend and the Transaction timestamp.
    """
    now = now or utcnow()

    retailer = record_store.find_by_id(Retailer, purchase.retailer_id)
    if retailer is None:
        return _deny(purchase, "retailer_not_found", now, verified_by, retailer=None)

    company = record_store.find_by_id(Company, purchase.company_id)
    if company is None:
        return _deny(purchase, "company_not_found", now, verified_by, retailer=retailer)

    if not link_service.is_linked(purchase.company_id, purchase.retailer_id):
        return _deny(purchase, "not_linked", now, verified_by, retailer=retailer)

    if not company.is_active:
        return _deny(purchase, "company_inactive", now, verified_by, retailer=retailer)

    user = record_store.find_by_id(User, purchase.user_id)
    if user is None:
        return _deny(purchase, "user_not_found", now, verified_by, retailer=retailer)

    if user.company_id != purchase.company_id:
        return _deny(purchase, "insufficient_permissions", now, verified_by, retailer=retailer)

    if not user.is_active:
        return _deny(purchase, "user_inactive", now, verified_by, retailer=retailer)

    return _decide(purchase, user, retailer, now, verified_by)


def _decide(purchase: PurchaseRequest, user: User, retailer: Retailer, now: datetime, verified_by: str) -> VerificationResult:
    user_id = user.id

    def _check_and_write() -> VerificationResult:
        current = spend_ledger_service.refresh_user_balance(record_store.find_by_id(User, user_id), now)
        spent = spend_ledger_service.global_spend(user_id, now)
        limit = current.spending_limit_cents

        if spent + purchase.amount_cents > limit:
            transaction = record_store.append(_new_transaction(
                purchase, now, TRANSACTION_DENIED, "limit_exceeded", spent, spent,
            ))
            return VerificationResult(transaction, "limit_exceeded", spent, limit)

        balance_after = spent + purchase.amount_cents
        with record_store.hold_collections(Transaction, User):
            transaction = record_store.append(
                _new_transaction(purchase, now, TRANSACTION_APPROVED, None, spent, balance_after),
                commit=False,
            )
            record_store.update_by_id(
                User,
                user_id,
                {"spent_this_month_cents": balance_after, "updated_at": utcnow()},
                commit=False,
            )
            db.session.commit()
        return VerificationResult(transaction, None, balance_after, limit)

    with user_lock(user_id):
        result = run_with_retry(_check_and_write)

    if result.approved:
        audit_service.purchase_approved(str(purchase.user_id), result.transaction, verified_by=verified_by)
        current_app.logger.info(
            "Purchase approved: transaction=%s user=%s retailer=%s amount=%s spent=%s/%s",
            result.transaction.id, user_id, purchase.retailer_id,
            purchase.amount_cents, result.spent_cents, result.limit_cents,
        )
        webhooks.trigger(
            retailer, EVENT_PURCHASE_APPROVED, result.transaction,
            extra={
                "spentThisMonth": cents_to_amount(result.spent_cents),
                "spendingLimit": cents_to_amount(result.limit_cents),
            },
        )
        return result

    audit_service.purchase_denied(str(purchase.user_id), result.transaction, verified_by=verified_by)
    current_app.logger.info(
        "Purchase denied: transaction=%s user=%s retailer=%s reason=limit_exceeded amount=%s spent=%s/%s",
        result.transaction.id, user_id, purchase.retailer_id,
        purchase.amount_cents, result.spent_cents, result.limit_cents,
    )
    extra = {
        "spentThisMonth": cents_to_amount(result.spent_cents),
        "spendingLimit": cents_to_amount(result.limit_cents),
    }
    webhooks.trigger(retailer, EVENT_PURCHASE_DENIED, result.transaction, extra=extra)
    webhooks.trigger(retailer, EVENT_LIMIT_EXCEEDED, result.transaction, extra=extra)
    return result


def _deny(purchase: PurchaseRequest, reason: str, now: datetime, verified_by: str, *, retailer: Retailer | None) -> VerificationResult:
    """Record a denial before the limit check; balances reflect the member's current spend."""
    member = record_store.find_by_id(User, purchase.user_id)
    if member is not None and member.company_id == purchase.company_id:
        balance = spend_ledger_service.global_spend(member.id, now)
        extra = {
            "spentThisMonth": cents_to_amount(balance),
            "spendingLimit": cents_to_amount(member.spending_limit_cents),
        }
    else:
        balance = 0
        extra = None

    transaction = record_store.append(_new_transaction(
        purchase, now, TRANSACTION_DENIED, reason, balance, balance,
    ))
    audit_service.purchase_denied(str(purchase.user_id), transaction, verified_by=verified_by)
    current_app.logger.info(
        "Purchase denied: transaction=%s user=%s company=%s retailer=%s reason=%s",
        transaction.id, purchase.user_id, purchase.company_id, purchase.retailer_id, reason,
    )

    if retailer is not None:
        webhooks.trigger(retailer, EVENT_PURCHASE_DENIED, transaction, extra=extra)
    return VerificationResult(transaction, reason)


def _new_transaction(purchase: PurchaseRequest, now: datetime, status: str, reason: str | None, before: int, after: int) -> Transaction:
    return Transaction(
        user_id=purchase.user_id,
        company_id=purchase.company_id,
        retailer_id=purchase.retailer_id,
        amount_cents=purchase.amount_cents,
        status=status,
        denial_reason=reason,
        timestamp=now,
        balance_before_cents=before,
        balance_after_cents=after,
    )


# ----------------------------------------------------------------------
# Decision log queries
# ----------------------------------------------------------------------

def get_transaction(transaction_id: int) -> Transaction | None:
    return record_store.find_by_id(Transaction, transaction_id)


def list_transactions(*, limit: int | None = 200, offset: int = 0, **filters) -> list[Transaction]:
    """Newest first; filters are column equality (user_id, company_id, retailer_id, status)."""
    filters = {key: value for key, value in filters.items() if value is not None}
    return record_store.find_all_by(
        Transaction,
        order_by=(Transaction.timestamp.desc(), Transaction.id.desc()),
        limit=limit,
        offset=offset,
        **filters,
    )
