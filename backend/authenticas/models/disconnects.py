from __future__ import annotations

from ..extensions import db
from authenticas.time_utils import to_utc_z


DISCONNECT_PENDING = "pending"
DISCONNECT_APPROVED = "approved"
DISCONNECT_REJECTED = "rejected"


class DisconnectRequest(db.Model):
    """
    Company-initiated, retailer-approved request to deactivate a link.

    LIFECYCLE: pending -> approved | rejected, exactly once.
    At most one pending request per (company_id, retailer_id); terminal
    history is unconstrained so a company can ask again after a rejection.
    """
    __tablename__ = "disconnect_requests"
    __table_args__ = (
        db.Index("ix_disconnect_requests_pair_status", "company_id", "retailer_id", "status"),
        db.Index("ix_disconnect_requests_retailer", "retailer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=DISCONNECT_PENDING)
    reason = db.Column(db.Text, nullable=True)

    requested_by = db.Column(db.String(64), nullable=False)
    processed_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    @property
    def is_pending(self) -> bool:
        return self.status == DISCONNECT_PENDING

    def __repr__(self) -> str:
        return f"<DisconnectRequest id={self.id} company={self.company_id} retailer={self.retailer_id} {self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "companyId": self.company_id,
            "retailerId": self.retailer_id,
            "status": self.status,
            "reason": self.reason,
            "requestedBy": self.requested_by,
            "processedBy": self.processed_by,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
