# Overview: Flask API routes for purchase verification and the decision log.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..models.ledger import TRANSACTION_APPROVED, TRANSACTION_DENIED
from ..permissions import PermissionDeniedError, Role
from ..services import verification_service
from ..validation import ValidationError


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

# Legacy integration path kept for retailer point-of-sale clients
verify_alias_bp = Blueprint("verify_alias", __name__)

MAX_LIST_LIMIT = 500


def _verify():
    try:
        purchase = verification_service.parse_request(request.get_json(silent=True))
        verification_service.authorize_verifier(g.principal, purchase)
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except PermissionDeniedError as exc:
        return jsonify({"error": str(exc)}), 403

    result = verification_service.verify_purchase(purchase, verified_by=g.principal.actor_id)
    return jsonify(result.to_response()), result.http_status


@transactions_bp.post("/verify")
@require_auth
@require_capability("VERIFY_PURCHASES")
def verify_purchase():
    """
    Verify a purchase.

    Request body:
    {
        "userId": 12,
        "companyId": 3,
        "retailerId": 7,
        "amount": 49.99
    }

    200 approved, 403/404 denied (body carries the reason), 400 malformed.
    """
    return _verify()


@verify_alias_bp.post("/verifyPurchase")
@require_auth
@require_capability("VERIFY_PURCHASES")
def verify_purchase_alias():
    return _verify()


def _scope_filters(principal) -> dict:
    """Column filters every transaction query is narrowed to for this principal."""
    if principal.role == Role.PLATFORM_OPERATOR:
        return {}
    if principal.role == Role.RETAILER_OPERATOR:
        return {"retailer_id": principal.retailer_id}
    if principal.role == Role.COMPANY_MEMBER:
        return {"company_id": principal.company_id, "user_id": principal.user_id}
    return {"company_id": principal.company_id}


def _merge_scope(scope: dict, requested: dict) -> dict | None:
    """Combine requested filters with the principal's scope; None if they contradict."""
    merged = dict(scope)
    for key, value in requested.items():
        if value is None:
            continue
        if key in merged and merged[key] != value:
            return None
        merged[key] = value
    return merged


def _paging() -> tuple[int, int]:
    try:
        limit = int(request.args.get("limit", 200))
        offset = int(request.args.get("offset", 0))
    except ValueError:
        raise ValidationError("limit and offset must be integers")
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")
    return min(limit, MAX_LIST_LIMIT), offset


def _requested_status() -> str | None:
    status = request.args.get("status")
    if status is not None and status not in (TRANSACTION_APPROVED, TRANSACTION_DENIED):
        raise ValidationError("status must be approved or denied")
    return status


def _list(requested: dict):
    try:
        limit, offset = _paging()
        requested = dict(requested, status=_requested_status())
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    filters = _merge_scope(_scope_filters(g.principal), requested)
    if filters is None:
        return jsonify({"error": "Access denied"}), 403
    transactions = verification_service.list_transactions(limit=limit, offset=offset, **filters)
    return jsonify([t.to_dict() for t in transactions]), 200


@transactions_bp.get("")
@require_auth
@require_capability("VIEW_TRANSACTIONS")
def list_transactions():
    requested = {
        "user_id": request.args.get("userId", type=int),
        "company_id": request.args.get("companyId", type=int),
        "retailer_id": request.args.get("retailerId", type=int),
    }
    return _list(requested)


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_capability("VIEW_TRANSACTIONS")
def get_transaction(transaction_id: int):
    transaction = verification_service.get_transaction(transaction_id)
    if transaction is None:
        return jsonify({"error": "Transaction not found"}), 404

    scope = _scope_filters(g.principal)
    if any(getattr(transaction, key) != value for key, value in scope.items()):
        return jsonify({"error": "Access denied"}), 403
    return jsonify(transaction.to_dict()), 200


@transactions_bp.get("/user/<int:user_id>")
@require_auth
@require_capability("VIEW_TRANSACTIONS")
def list_user_transactions(user_id: int):
    return _list({"user_id": user_id})


@transactions_bp.get("/company/<int:company_id>")
@require_auth
@require_capability("VIEW_TRANSACTIONS")
def list_company_transactions(company_id: int):
    return _list({"company_id": company_id})
