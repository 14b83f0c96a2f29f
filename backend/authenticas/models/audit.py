from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from authenticas.time_utils import to_utc_z
from .ledger import ImmutableRecordError


class AuditEntry(db.Model):
    """
    Append-only record of every state change.

    IMMUTABLE: Never update or delete. before/after snapshots and metadata
    are JSON documents captured at the time of the change.

    performed_by holds the acting user id as a string, or "system" for
    automatic changes such as the monthly reset.
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        db.Index("ix_audit_entries_target", "target_type", "target_id"),
        db.Index("ix_audit_entries_performed_by", "performed_by"),
        db.Index("ix_audit_entries_action", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)
    performed_by = db.Column(db.String(64), nullable=False)
    target_type = db.Column(db.String(32), nullable=False)
    target_id = db.Column(db.String(64), nullable=False)

    before_state = db.Column(db.JSON, nullable=True)
    after_state = db.Column(db.JSON, nullable=True)
    # "metadata" is reserved on declarative models
    extra = db.Column("metadata", db.JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEntry id={self.id} {self.action} {self.target_type}:{self.target_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": to_utc_z(self.timestamp),
            "action": self.action,
            "performedBy": self.performed_by,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "beforeState": self.before_state,
            "afterState": self.after_state,
            "metadata": self.extra,
        }


@event.listens_for(AuditEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ImmutableRecordError(f"AuditEntry {target.id} is immutable")


@event.listens_for(AuditEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ImmutableRecordError(f"AuditEntry {target.id} cannot be deleted")
