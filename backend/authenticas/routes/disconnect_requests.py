# Overview: Flask API routes for disconnect requests; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..models.disconnects import DISCONNECT_APPROVED, DISCONNECT_PENDING, DISCONNECT_REJECTED
from ..permissions import PermissionDeniedError, Role
from ..services import disconnect_service
from ..validation import ConflictError, NotFoundError, ValidationError, parse_id, require_payload


disconnect_requests_bp = Blueprint("disconnect_requests", __name__, url_prefix="/api/disconnect-requests")
company_disconnects_bp = Blueprint("company_disconnects", __name__, url_prefix="/api/companies")

_STATUSES = (DISCONNECT_PENDING, DISCONNECT_APPROVED, DISCONNECT_REJECTED)


def _status_arg():
    status = request.args.get("status")
    if status is not None and status not in _STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(_STATUSES)}")
    return status


@disconnect_requests_bp.get("")
@require_auth
@require_capability("VIEW_DISCONNECT_REQUESTS")
def list_requests():
    """Platform operators see all requests, retailers their own, companies theirs."""
    try:
        status = _status_arg()
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    principal = g.principal
    if principal.role == Role.PLATFORM_OPERATOR:
        retailer_id = request.args.get("retailerId", type=int)
        if retailer_id is not None:
            requests = disconnect_service.requests_for_retailer(retailer_id, status)
        else:
            requests = disconnect_service.list_requests(status)
    elif principal.role == Role.RETAILER_OPERATOR:
        requests = disconnect_service.requests_for_retailer(principal.retailer_id, status)
    else:
        requests = disconnect_service.requests_for_company(principal.company_id, status)
    return jsonify([r.to_dict() for r in requests]), 200


@disconnect_requests_bp.get("/<int:request_id>")
@require_auth
@require_capability("VIEW_DISCONNECT_REQUESTS")
def get_request(request_id: int):
    disconnect_request = disconnect_service.get_request(request_id)
    if disconnect_request is None:
        return jsonify({"error": "Disconnect request not found"}), 404
    if not disconnect_service.can_view(g.principal, disconnect_request):
        return jsonify({"error": "Access denied"}), 403
    return jsonify(disconnect_request.to_dict()), 200


@disconnect_requests_bp.post("/<int:request_id>/approve")
@require_auth
@require_capability("PROCESS_DISCONNECT")
def approve_request(request_id: int):
    try:
        disconnect_request = disconnect_service.approve_request(g.principal, request_id)
    except NotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except PermissionDeniedError as exc:
        return jsonify({"error": str(exc)}), 403
    except ConflictError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(disconnect_request.to_dict()), 200


@disconnect_requests_bp.post("/<int:request_id>/reject")
@require_auth
@require_capability("PROCESS_DISCONNECT")
def reject_request(request_id: int):
    try:
        disconnect_request = disconnect_service.reject_request(g.principal, request_id)
    except NotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except PermissionDeniedError as exc:
        return jsonify({"error": str(exc)}), 403
    except ConflictError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(disconnect_request.to_dict()), 200


@company_disconnects_bp.post("/<int:company_id>/disconnect-requests")
@require_auth
@require_capability("REQUEST_DISCONNECT")
def create_request(company_id: int):
    """
    Ask a retailer to sever the link with this company.

    Request body:
    {
        "retailerId": 7,
        "reason": "Switching suppliers"
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        retailer_id = parse_id(data.get("retailerId"), "retailerId")
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")
        disconnect_request = disconnect_service.create_request(g.principal, company_id, retailer_id, reason)
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except PermissionDeniedError as exc:
        return jsonify({"error": str(exc)}), 403
    except NotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except ConflictError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(disconnect_request.to_dict()), 201


@company_disconnects_bp.get("/<int:company_id>/disconnect-requests")
@require_auth
@require_capability("VIEW_DISCONNECT_REQUESTS")
def list_company_requests(company_id: int):
    principal = g.principal
    if principal.role in (Role.COMPANY_ADMIN, Role.COMPANY_MEMBER) and principal.company_id != company_id:
        return jsonify({"error": "Access denied. You can only view disconnect requests for your own company."}), 403
    try:
        status = _status_arg()
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    requests = disconnect_service.requests_for_company(company_id, status)
    if principal.role == Role.RETAILER_OPERATOR:
        requests = [r for r in requests if r.retailer_id == principal.retailer_id]
    return jsonify([r.to_dict() for r in requests]), 200
