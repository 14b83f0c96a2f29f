# Overview: Service-layer operations for company-retailer links.

"""
Link Registry

INVARIANTS:
- One CompanyRetailerLink row per (company_id, retailer_id), hence at most
  one active link per pair.
- Deactivation flips status and keeps the row; creating a link for a pair
  with an inactive row reactivates that same row (same id).
- Linking never edits the Retailer or Company rows.

The verification engine calls is_linked() on every request, so a link
deactivated by an approved disconnect request is observed immediately.
"""

from __future__ import annotations

from flask import current_app

from ..models import Company, CompanyRetailerLink, Retailer
from ..models.parties import LINK_STATUS_ACTIVE, LINK_STATUS_INACTIVE
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError
from . import audit_service, record_store


def get_link(company_id: int, retailer_id: int) -> CompanyRetailerLink | None:
    return record_store.find_one_by(
        CompanyRetailerLink,
        company_id=company_id,
        retailer_id=retailer_id,
    )


def is_linked(company_id: int, retailer_id: int) -> bool:
    link = record_store.find_one_by(
        CompanyRetailerLink,
        company_id=company_id,
        retailer_id=retailer_id,
        status=LINK_STATUS_ACTIVE,
    )
    return link is not None


def create_link(company_id: int, retailer_id: int, performed_by) -> tuple[CompanyRetailerLink, bool]:
    """
    Activate the link for a pair.

    Returns (link, created): created is False when an inactive row was
    reactivated in place.

    Raises NotFoundError if either party is missing, ConflictError if the
    pair is already actively linked.
    """
    if record_store.find_by_id(Company, company_id) is None:
        raise NotFoundError("Company not found")
    if record_store.find_by_id(Retailer, retailer_id) is None:
        raise NotFoundError("Retailer not found")

    with record_store.collection_lock(CompanyRetailerLink):
        existing = get_link(company_id, retailer_id)
        if existing is not None and existing.is_active:
            raise ConflictError("Company is already linked to this retailer")

        if existing is not None:
            link = record_store.update_by_id(
                CompanyRetailerLink,
                existing.id,
                {"status": LINK_STATUS_ACTIVE, "updated_at": utcnow()},
            )
            created = False
        else:
            link = record_store.append(CompanyRetailerLink(
                company_id=company_id,
                retailer_id=retailer_id,
                status=LINK_STATUS_ACTIVE,
                created_at=utcnow(),
            ))
            created = True

    audit_service.link_created(performed_by, link, reactivated=not created)
    current_app.logger.info(
        "Link %s company=%s retailer=%s %s",
        link.id, company_id, retailer_id, "created" if created else "reactivated",
    )
    return link, created


def deactivate_link(company_id: int, retailer_id: int) -> bool:
    """
    Flip the active link for a pair to inactive.

    Returns False (and changes nothing) when no active link exists.
    Callers record the audit entry, since they know who asked and why.
    """
    with record_store.collection_lock(CompanyRetailerLink):
        link = get_link(company_id, retailer_id)
        if link is None or not link.is_active:
            return False
        record_store.update_by_id(
            CompanyRetailerLink,
            link.id,
            {"status": LINK_STATUS_INACTIVE, "updated_at": utcnow()},
        )
    return True


def unlink(company_id: int, retailer_id: int, performed_by) -> CompanyRetailerLink:
    """
    Administrative deactivation, outside the disconnect workflow.

    Raises NotFoundError when the pair has no active link.
    """
    link = get_link(company_id, retailer_id)
    if link is None or not link.is_active:
        raise NotFoundError("Active link not found")
    before = link.to_dict()
    if not deactivate_link(company_id, retailer_id):
        raise NotFoundError("Active link not found")
    audit_service.link_deactivated(performed_by, link, before, via="admin")
    return link


def active_links_for_retailer(retailer_id: int) -> list[CompanyRetailerLink]:
    return record_store.find_all_by(
        CompanyRetailerLink,
        retailer_id=retailer_id,
        status=LINK_STATUS_ACTIVE,
        order_by=CompanyRetailerLink.id.asc(),
    )


def active_links_for_company(company_id: int) -> list[CompanyRetailerLink]:
    return record_store.find_all_by(
        CompanyRetailerLink,
        company_id=company_id,
        status=LINK_STATUS_ACTIVE,
        order_by=CompanyRetailerLink.id.asc(),
    )


def list_links(*, company_id: int | None = None, retailer_id: int | None = None, active_only: bool = False) -> list[CompanyRetailerLink]:
    filters = {}
    if company_id is not None:
        filters["company_id"] = company_id
    if retailer_id is not None:
        filters["retailer_id"] = retailer_id
    if active_only:
        filters["status"] = LINK_STATUS_ACTIVE
    return record_store.find_all_by(CompanyRetailerLink, order_by=CompanyRetailerLink.id.asc(), **filters)


def linked_companies(retailer_id: int) -> list[Company]:
    company_ids = [link.company_id for link in active_links_for_retailer(retailer_id)]
    if not company_ids:
        return []
    return record_store.find_all_by(Company, Company.id.in_(company_ids), order_by=Company.name.asc())


def linked_retailers(company_id: int) -> list[Retailer]:
    retailer_ids = [link.retailer_id for link in active_links_for_company(company_id)]
    if not retailer_ids:
        return []
    return record_store.find_all_by(Retailer, Retailer.id.in_(retailer_ids), order_by=Retailer.name.asc())
