from __future__ import annotations

from ..extensions import db
from authenticas.time_utils import to_utc_z
from authenticas.validation import cents_to_amount


class User(db.Model):
    """
    Person acting on the platform: operators and company employees.

    WHY: spending_limit_cents is a GLOBAL monthly budget, shared across every
    retailer the user's company is linked to. spent_this_month_cents is a
    cache of the approved-transaction ledger, refreshed on every read path.

    CONCURRENCY: version_id enables optimistic locking so a balance update
    computed from a stale read fails with StaleDataError instead of
    overwriting a concurrent approval.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_company_id", "company_id"),
        db.Index("ix_users_retailer_id", "retailer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    first_name = db.Column(db.String(120), nullable=False, default="")
    last_name = db.Column(db.String(120), nullable=False, default="")

    # Membership: company roles carry company_id, retailer operators carry retailer_id
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=True)

    role = db.Column(db.String(32), nullable=False, default="company_member")

    spending_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    spent_this_month_cents = db.Column(db.Integer, nullable=False, default=0)
    last_reset_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    company = db.relationship("Company", backref=db.backref("users", lazy=True))
    retailer = db.relationship("Retailer", backref=db.backref("operators", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "companyId": self.company_id,
            "retailerId": self.retailer_id,
            "role": self.role,
            "spendingLimit": cents_to_amount(self.spending_limit_cents),
            "spentThisMonth": cents_to_amount(self.spent_this_month_cents),
            "remainingBudget": cents_to_amount(max(self.spending_limit_cents - self.spent_this_month_cents, 0)),
            "lastResetDate": to_utc_z(self.last_reset_at),
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class SessionToken(db.Model):
    """
    Bearer session for an authenticated user.

    SECURITY: Only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "createdAt": to_utc_z(self.created_at),
            "lastUsedAt": to_utc_z(self.last_used_at),
            "expiresAt": to_utc_z(self.expires_at),
            "revokedAt": to_utc_z(self.revoked_at),
        }
