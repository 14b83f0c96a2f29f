# Overview: Service-layer operations for the monthly spend ledger and lazy reset.

"""
Monthly Spend Ledger

WHY: A user's budget is global across every retailer their company is linked
to. The approved Transaction rows are the source of truth; the
User.spent_this_month_cents column is a cache that is refreshed here on
every read path (get-one, list, verify) and written together with an
approval.

LAZY RESET: There is no scheduled job. The first access after a calendar
month boundary (UTC) zeroes the cache, moves last_reset_at forward and
records a monthly.reset audit entry performed by "system".
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Transaction, User
from ..models.ledger import TRANSACTION_APPROVED
from ..time_utils import month_bounds, same_month, to_utc_z, utcnow
from . import audit_service, record_store
from .concurrency import run_with_retry, user_lock


def global_spend(user_id: int, as_of: datetime | None = None) -> int:
    """Sum (cents) of the user's approved Transactions in as_of's calendar month, all retailers."""
    as_of = as_of or utcnow()
    start, end = month_bounds(as_of)
    total = (
        db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .filter(
            Transaction.user_id == user_id,
            Transaction.status == TRANSACTION_APPROVED,
            Transaction.timestamp >= start,
            Transaction.timestamp < end,
        )
        .scalar()
    )
    return int(total or 0)


def needs_reset(user: User, as_of: datetime) -> bool:
    """True once as_of is in a later calendar month than last_reset_at; never resets backwards."""
    if same_month(user.last_reset_at, as_of):
        return False
    last = user.last_reset_at
    return last is None or (as_of.year, as_of.month) > (last.year, last.month)


def apply_lazy_reset(user: User, as_of: datetime | None = None) -> User:
    """
    Zero the cached monthly spend if last_reset_at is in another (year, month).

    Returns the user unchanged when no reset is due.
    """
    as_of = as_of or utcnow()
    if not needs_reset(user, as_of):
        return user

    previous = user.spent_this_month_cents
    user = record_store.update_by_id(
        User,
        user.id,
        {"spent_this_month_cents": 0, "last_reset_at": as_of, "updated_at": utcnow()},
    )
    audit_service.monthly_reset(user.id, previous / 100, reset_at=to_utc_z(as_of))
    current_app.logger.info("Monthly spend reset for user %s (previous %s cents)", user.id, previous)
    return user


def refresh_user_balance(user: User, as_of: datetime | None = None) -> User:
    """
    Single entry point for every read of a user's balance.

    Applies the lazy reset, then re-derives the cache from the ledger and
    persists it if the two diverged.
    """
    as_of = as_of or utcnow()
    user_id = user.id

    def _refresh() -> User:
        current = record_store.find_by_id(User, user_id)
        # another session may have committed since this one loaded the row
        db.session.refresh(current)
        current = apply_lazy_reset(current, as_of)
        derived = global_spend(user_id, as_of)
        if derived != current.spent_this_month_cents:
            current_app.logger.warning(
                "Cached spend for user %s diverged from ledger (%s != %s cents); refreshing",
                user_id, current.spent_this_month_cents, derived,
            )
            current = record_store.update_by_id(
                User,
                user_id,
                {"spent_this_month_cents": derived, "updated_at": utcnow()},
            )
        return current

    with user_lock(user_id):
        return run_with_retry(_refresh)


def refresh_users(users: list[User], as_of: datetime | None = None) -> list[User]:
    as_of = as_of or utcnow()
    return [refresh_user_balance(user, as_of) for user in users]


def remaining_budget(limit_cents: int, spent_cents: int) -> int:
    return max(limit_cents - spent_cents, 0)
