# Overview: Flask API routes for directory administration (retailers, companies, users).

"""
Directory administration endpoints.

Retailers and companies are managed by platform operators. Users are
managed by platform operators, and by company admins within their own
company. Every mutation is written to the audit trail by the service layer.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..models import Company, Retailer
from ..permissions import PermissionDeniedError, Role
from ..services import directory_service
from ..validation import ConflictError, NotFoundError, ValidationError


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

_PARTY_MODELS = {
    "retailers": Retailer,
    "companies": Company,
}


def _error_response(exc: Exception):
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, PermissionDeniedError):
        return jsonify({"error": str(exc)}), 403
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    raise exc


# ----------------------------------------------------------------------
# Retailers / companies
# ----------------------------------------------------------------------

@admin_bp.get("/<any(retailers, companies):collection>")
@require_auth
@require_capability("MANAGE_DIRECTORY")
def list_parties(collection: str):
    active_only = request.args.get("activeOnly", "false").lower() == "true"
    records = directory_service.list_parties(_PARTY_MODELS[collection], active_only=active_only)
    return jsonify([record.to_dict() for record in records]), 200


@admin_bp.post("/<any(retailers, companies):collection>")
@require_auth
@require_capability("MANAGE_DIRECTORY")
def create_party(collection: str):
    """
    Create a retailer or company.

    The API key is returned once in the response and never listed again.
    """
    try:
        record, api_key = directory_service.create_party(
            _PARTY_MODELS[collection],
            request.get_json(silent=True),
            g.principal.actor_id,
        )
    except (ValidationError, NotFoundError, ConflictError) as exc:
        return _error_response(exc)
    body = record.to_dict()
    body["apiKey"] = api_key
    return jsonify(body), 201


@admin_bp.get("/<any(retailers, companies):collection>/<int:record_id>")
@require_auth
@require_capability("MANAGE_DIRECTORY")
def get_party(collection: str, record_id: int):
    record = directory_service.get_party(_PARTY_MODELS[collection], record_id)
    if record is None:
        return jsonify({"error": "Not found"}), 404
    return jsonify(record.to_dict()), 200


@admin_bp.put("/<any(retailers, companies):collection>/<int:record_id>")
@require_auth
@require_capability("MANAGE_DIRECTORY")
def update_party(collection: str, record_id: int):
    try:
        record = directory_service.update_party(
            _PARTY_MODELS[collection],
            record_id,
            request.get_json(silent=True),
            g.principal.actor_id,
        )
    except (ValidationError, NotFoundError, ConflictError) as exc:
        return _error_response(exc)
    return jsonify(record.to_dict()), 200


@admin_bp.post("/<any(retailers, companies):collection>/<int:record_id>/api-key")
@require_auth
@require_capability("MANAGE_DIRECTORY")
def regenerate_api_key(collection: str, record_id: int):
    try:
        record, api_key = directory_service.regenerate_api_key(
            _PARTY_MODELS[collection], record_id, g.principal.actor_id
        )
    except NotFoundError as exc:
        return _error_response(exc)
    body = record.to_dict()
    body["apiKey"] = api_key
    return jsonify(body), 200


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------

@admin_bp.get("/users")
@require_auth
@require_capability("VIEW_USERS")
def list_users():
    principal = g.principal
    if principal.role == Role.PLATFORM_OPERATOR:
        users = directory_service.list_users(
            company_id=request.args.get("companyId", type=int),
            retailer_id=request.args.get("retailerId", type=int),
        )
    else:
        users = directory_service.list_users(company_id=principal.company_id)
    return jsonify([user.to_dict() for user in users]), 200


@admin_bp.post("/users")
@require_auth
@require_capability("MANAGE_USERS")
def create_user():
    try:
        user = directory_service.create_user(g.principal, request.get_json(silent=True))
    except (ValidationError, PermissionDeniedError, NotFoundError, ConflictError) as exc:
        return _error_response(exc)
    return jsonify(user.to_dict()), 201


@admin_bp.get("/users/<int:user_id>")
@require_auth
@require_capability("VIEW_USERS")
def get_user(user_id: int):
    user = directory_service.get_user(user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404
    if not directory_service.can_view_user(g.principal, user):
        return jsonify({"error": "Access denied"}), 403
    return jsonify(user.to_dict()), 200


@admin_bp.put("/users/<int:user_id>")
@require_auth
@require_capability("MANAGE_USERS")
def update_user(user_id: int):
    try:
        user = directory_service.update_user(g.principal, user_id, request.get_json(silent=True))
    except (ValidationError, PermissionDeniedError, NotFoundError, ConflictError) as exc:
        return _error_response(exc)
    return jsonify(user.to_dict()), 200


@admin_bp.get("/me")
@require_auth
def whoami():
    return jsonify(g.principal.to_dict()), 200
