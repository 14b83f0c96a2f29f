# Overview: Flask API routes for reading the audit trail.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_capability
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _int_arg(name: str, default: int) -> int:
    value = request.args.get(name, default, type=int)
    return default if value is None else value


@audit_bp.get("")
@require_auth
@require_capability("VIEW_AUDIT_LOG")
def list_entries():
    """
    Paginated audit trail, newest first.

    Query params: limit (default 100, max 500), offset (default 0)
    """
    limit = _int_arg("limit", 100)
    offset = _int_arg("offset", 0)
    if limit < 0 or offset < 0:
        return jsonify({"error": "limit and offset must be non-negative"}), 400

    entries, total = audit_service.list_entries(limit=limit, offset=offset)
    return jsonify({
        "entries": [entry.to_dict() for entry in entries],
        "total": total,
        "limit": min(limit, audit_service.MAX_PAGE_SIZE),
        "offset": offset,
    }), 200


@audit_bp.get("/recent")
@require_auth
@require_capability("VIEW_AUDIT_LOG")
def recent_entries():
    count = _int_arg("count", audit_service.DEFAULT_RECENT_COUNT)
    if count < 0:
        return jsonify({"error": "count must be non-negative"}), 400
    entries = audit_service.recent_entries(count)
    return jsonify([entry.to_dict() for entry in entries]), 200


@audit_bp.get("/user/<int:user_id>")
@require_auth
@require_capability("VIEW_AUDIT_LOG")
def entries_by_user(user_id: int):
    entries = audit_service.entries_by_user(user_id)
    return jsonify([entry.to_dict() for entry in entries]), 200


@audit_bp.get("/target/<target_type>/<target_id>")
@require_auth
@require_capability("VIEW_AUDIT_LOG")
def entries_for_target(target_type: str, target_id: str):
    if target_type not in audit_service.TARGET_TYPES:
        return jsonify({"error": f"Unknown target type: {target_type}"}), 400
    entries = audit_service.entries_for_target(target_type, target_id)
    return jsonify([entry.to_dict() for entry in entries]), 200
