from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from authenticas.time_utils import to_utc_z
from authenticas.validation import cents_to_amount


TRANSACTION_APPROVED = "approved"
TRANSACTION_DENIED = "denied"

# Closed set of reasons a verification attempt can be denied.
DENIAL_REASONS = (
    "retailer_not_found",
    "company_not_found",
    "company_inactive",
    "user_not_found",
    "user_inactive",
    "insufficient_permissions",
    "not_linked",
    "limit_exceeded",
)


class ImmutableRecordError(RuntimeError):
    """Raised when code attempts to modify or delete a write-once record."""


class Transaction(db.Model):
    """
    One row per verification attempt, approved or denied.

    IMMUTABLE: Written once by the verification engine, never updated or
    deleted. The table is a complete decision log, not just successes.

    user_id / company_id / retailer_id are plain integers (no foreign keys)
    because denied attempts may reference entities that do not exist.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_user_status_ts", "user_id", "status", "timestamp"),
        db.Index("ix_transactions_company_ts", "company_id", "timestamp"),
        db.Index("ix_transactions_retailer_ts", "retailer_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False)
    company_id = db.Column(db.Integer, nullable=False)
    retailer_id = db.Column(db.Integer, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False)
    denial_reason = db.Column(db.String(32), nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    balance_before_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_after_cents = db.Column(db.Integer, nullable=False, default=0)

    @property
    def is_approved(self) -> bool:
        return self.status == TRANSACTION_APPROVED

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} user={self.user_id} {self.status} {self.amount_cents}c>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "companyId": self.company_id,
            "retailerId": self.retailer_id,
            "amount": cents_to_amount(self.amount_cents),
            "status": self.status,
            "denialReason": self.denial_reason,
            "timestamp": to_utc_z(self.timestamp),
            "balanceBefore": cents_to_amount(self.balance_before_cents),
            "balanceAfter": cents_to_amount(self.balance_after_cents),
        }


@event.listens_for(Transaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise ImmutableRecordError(f"Transaction {target.id} is immutable")


@event.listens_for(Transaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Transaction {target.id} cannot be deleted")
