from __future__ import annotations

from ..extensions import db
from authenticas.time_utils import to_utc_z


LINK_STATUS_ACTIVE = "active"
LINK_STATUS_INACTIVE = "inactive"


class Retailer(db.Model):
    """
    Seller that verifies employee purchases.

    WHY: Retailers call the verification endpoint and receive webhook
    notifications about every decision made at their point of sale.
    Relationships to companies live only in company_retailer_links.
    """
    __tablename__ = "retailers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    api_key = db.Column(db.String(128), nullable=False, unique=True, index=True)
    webhook_url = db.Column(db.String(2048), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Retailer id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "webhookUrl": self.webhook_url,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class Company(db.Model):
    """
    Buyer whose employees purchase at linked retailers.

    A company may be linked to any number of retailers; its employees share
    a single monthly budget per user across all of them.
    """
    __tablename__ = "companies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    api_key = db.Column(db.String(128), nullable=False, unique=True, index=True)
    webhook_url = db.Column(db.String(2048), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "webhookUrl": self.webhook_url,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class CompanyRetailerLink(db.Model):
    """
    Many-to-many relationship between a company and a retailer.

    INVARIANT: One row per (company_id, retailer_id). Deactivation flips
    status to inactive and keeps the row; relinking reactivates the same row.
    """
    __tablename__ = "company_retailer_links"
    __table_args__ = (
        db.UniqueConstraint("company_id", "retailer_id", name="uq_links_company_retailer"),
        db.Index("ix_links_retailer_status", "retailer_id", "status"),
        db.Index("ix_links_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=LINK_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    company = db.relationship("Company", backref=db.backref("links", lazy=True))
    retailer = db.relationship("Retailer", backref=db.backref("links", lazy=True))

    @property
    def is_active(self) -> bool:
        return self.status == LINK_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<CompanyRetailerLink id={self.id} company={self.company_id} retailer={self.retailer_id} {self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "companyId": self.company_id,
            "retailerId": self.retailer_id,
            "status": self.status,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
