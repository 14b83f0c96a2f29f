# Overview: Service-layer operations for the company-retailer disconnect workflow.

"""
Disconnect Workflow

STATE MACHINE: (none) -> pending -> approved | rejected (terminal)

- Create: company admin of the target company, link must be active, no
  pending request for the pair.
- Approve: retailer operator of the target retailer, or platform operator.
  Marks the request approved and then deactivates the link. A failed
  deactivation is logged; the approval is NOT rolled back.
- Reject: same authorization, no link mutation.

A company may ask again after a rejection; only pending requests are unique
per pair.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db, webhooks
from ..models import Company, DisconnectRequest, Retailer
from ..models.disconnects import DISCONNECT_APPROVED, DISCONNECT_PENDING, DISCONNECT_REJECTED
from ..permissions import PermissionDeniedError, Role
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from . import audit_service, link_service, record_store
from .webhook_service import EVENT_DISCONNECT_APPROVED, EVENT_DISCONNECT_REJECTED, EVENT_DISCONNECT_REQUESTED


MAX_REASON_LENGTH = 2000
_NEWEST_FIRST = (DisconnectRequest.created_at.desc(), DisconnectRequest.id.desc())


def _webhook_data(request: DisconnectRequest) -> dict:
    data = {
        "disconnectRequestId": request.id,
        "companyId": request.company_id,
        "retailerId": request.retailer_id,
        "status": request.status,
    }
    if request.reason:
        data["reason"] = request.reason
    return data


def _pending_for_pair(company_id: int, retailer_id: int) -> DisconnectRequest | None:
    return record_store.find_one_by(
        DisconnectRequest,
        company_id=company_id,
        retailer_id=retailer_id,
        status=DISCONNECT_PENDING,
    )


def create_request(principal, company_id: int, retailer_id: int, reason: str | None = None) -> DisconnectRequest:
    """
    Open a pending disconnect request.

    Raises PermissionDeniedError unless the caller administers the company,
    NotFoundError for unknown parties, ConflictError when the link is not
    active or a request is already pending.
    """
    if principal.role != Role.COMPANY_ADMIN or principal.company_id != company_id:
        raise PermissionDeniedError("You can only create disconnect requests for your own company")

    if reason is not None:
        reason = reason.strip() or None
        if reason and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"reason exceeds max length {MAX_REASON_LENGTH}")

    if record_store.find_by_id(Company, company_id) is None:
        raise NotFoundError("Company not found")
    retailer = record_store.find_by_id(Retailer, retailer_id)
    if retailer is None:
        raise NotFoundError("Retailer not found")

    with record_store.collection_lock(DisconnectRequest):
        if not link_service.is_linked(company_id, retailer_id):
            raise ConflictError("Company is not connected to this retailer")
        if _pending_for_pair(company_id, retailer_id) is not None:
            raise ConflictError("There is already a pending disconnect request for this retailer")

        now = utcnow()
        request = record_store.append(DisconnectRequest(
            company_id=company_id,
            retailer_id=retailer_id,
            status=DISCONNECT_PENDING,
            reason=reason,
            requested_by=principal.actor_id,
            created_at=now,
            updated_at=now,
        ))

    audit_service.disconnect_requested(principal.actor_id, request)
    current_app.logger.info(
        "Disconnect request %s opened: company=%s retailer=%s", request.id, company_id, retailer_id
    )
    webhooks.trigger(retailer, EVENT_DISCONNECT_REQUESTED, data=_webhook_data(request))
    return request


def _authorize_processing(principal, request: DisconnectRequest) -> None:
    if principal.role == Role.PLATFORM_OPERATOR:
        return
    if principal.role == Role.RETAILER_OPERATOR and principal.retailer_id == request.retailer_id:
        return
    raise PermissionDeniedError("You can only process requests for your own retailer")


def _transition(principal, request_id: int, new_status: str) -> tuple[DisconnectRequest, dict]:
    request = record_store.find_by_id(DisconnectRequest, request_id)
    if request is None:
        raise NotFoundError("Disconnect request not found")
    _authorize_processing(principal, request)

    with record_store.collection_lock(DisconnectRequest):
        # re-read under the lock so two processors cannot both leave pending
        db.session.refresh(request)
        if not request.is_pending:
            raise ConflictError(f"Request has already been {request.status}")
        before = request.to_dict()
        request = record_store.update_by_id(
            DisconnectRequest,
            request.id,
            {"status": new_status, "processed_by": principal.actor_id, "updated_at": utcnow()},
        )
    return request, before


def approve_request(principal, request_id: int) -> DisconnectRequest:
    request, before = _transition(principal, request_id, DISCONNECT_APPROVED)

    link = link_service.get_link(request.company_id, request.retailer_id)
    link_before = link.to_dict() if link is not None else None
    try:
        deactivated = link_service.deactivate_link(request.company_id, request.retailer_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to deactivate link for approved disconnect request %s (company=%s retailer=%s)",
            request.id, request.company_id, request.retailer_id,
        )
        deactivated = False
    else:
        if not deactivated:
            current_app.logger.warning(
                "Disconnect request %s approved but no active link existed (company=%s retailer=%s)",
                request.id, request.company_id, request.retailer_id,
            )

    audit_service.disconnect_processed(principal.actor_id, request, before, link_deactivated=deactivated)
    if deactivated:
        audit_service.link_deactivated(principal.actor_id, link, link_before, via=f"disconnect_request:{request.id}")

    current_app.logger.info("Disconnect request %s approved by %s", request.id, principal.actor_id)
    company = record_store.find_by_id(Company, request.company_id)
    webhooks.trigger(company, EVENT_DISCONNECT_APPROVED, data=_webhook_data(request))
    return request


def reject_request(principal, request_id: int) -> DisconnectRequest:
    request, before = _transition(principal, request_id, DISCONNECT_REJECTED)

    audit_service.disconnect_processed(principal.actor_id, request, before)
    current_app.logger.info("Disconnect request %s rejected by %s", request.id, principal.actor_id)
    company = record_store.find_by_id(Company, request.company_id)
    webhooks.trigger(company, EVENT_DISCONNECT_REJECTED, data=_webhook_data(request))
    return request


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

def get_request(request_id: int) -> DisconnectRequest | None:
    return record_store.find_by_id(DisconnectRequest, request_id)


def requests_for_retailer(retailer_id: int, status: str | None = None) -> list[DisconnectRequest]:
    filters = {"retailer_id": retailer_id}
    if status:
        filters["status"] = status
    return record_store.find_all_by(DisconnectRequest, order_by=_NEWEST_FIRST, **filters)


def requests_for_company(company_id: int, status: str | None = None) -> list[DisconnectRequest]:
    filters = {"company_id": company_id}
    if status:
        filters["status"] = status
    return record_store.find_all_by(DisconnectRequest, order_by=_NEWEST_FIRST, **filters)


def list_requests(status: str | None = None) -> list[DisconnectRequest]:
    filters = {"status": status} if status else {}
    return record_store.find_all_by(DisconnectRequest, order_by=_NEWEST_FIRST, **filters)


def can_view(principal, request: DisconnectRequest) -> bool:
    if principal.role == Role.PLATFORM_OPERATOR:
        return True
    if principal.role == Role.RETAILER_OPERATOR:
        return principal.retailer_id == request.retailer_id
    return principal.company_id == request.company_id
