# Overview: Flask API routes for company-retailer links; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..permissions import Role
from ..services import link_service
from ..validation import ConflictError, NotFoundError, ValidationError, parse_id, require_payload


links_bp = Blueprint("links", __name__, url_prefix="/api/links")


def _visible_filters(principal) -> dict:
    if principal.role == Role.PLATFORM_OPERATOR:
        return {}
    if principal.role == Role.RETAILER_OPERATOR:
        return {"retailer_id": principal.retailer_id}
    return {"company_id": principal.company_id}


@links_bp.get("")
@require_auth
@require_capability("VIEW_LINKS")
def list_links():
    active_only = request.args.get("activeOnly", "false").lower() == "true"
    links = link_service.list_links(active_only=active_only, **_visible_filters(g.principal))
    return jsonify([link.to_dict() for link in links]), 200


@links_bp.post("")
@require_auth
@require_capability("MANAGE_LINKS")
def create_link():
    """
    Link a company to a retailer, reactivating a previously deactivated link.

    201 when a new link row is created, 200 when an inactive one is reactivated.
    """
    try:
        data = require_payload(request.get_json(silent=True))
        company_id = parse_id(data.get("companyId"), "companyId")
        retailer_id = parse_id(data.get("retailerId"), "retailerId")
        link, created = link_service.create_link(company_id, retailer_id, g.principal.actor_id)
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except NotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except ConflictError as exc:
        return jsonify({"error": str(exc)}), 409

    body = link.to_dict()
    body["reactivated"] = not created
    return jsonify(body), 201 if created else 200


@links_bp.delete("/companies/<int:company_id>/retailers/<int:retailer_id>")
@require_auth
@require_capability("MANAGE_LINKS")
def deactivate_link(company_id: int, retailer_id: int):
    try:
        link = link_service.unlink(company_id, retailer_id, g.principal.actor_id)
    except NotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    return jsonify(link.to_dict()), 200


@links_bp.get("/retailers/<int:retailer_id>/companies")
@require_auth
@require_capability("VIEW_LINKS")
def list_linked_companies(retailer_id: int):
    principal = g.principal
    if principal.role == Role.RETAILER_OPERATOR and principal.retailer_id != retailer_id:
        return jsonify({"error": "Access denied"}), 403
    companies = link_service.linked_companies(retailer_id)
    if principal.role in (Role.COMPANY_ADMIN, Role.COMPANY_MEMBER):
        companies = [c for c in companies if c.id == principal.company_id]
    return jsonify([company.to_dict() for company in companies]), 200


@links_bp.get("/companies/<int:company_id>/retailers")
@require_auth
@require_capability("VIEW_LINKS")
def list_linked_retailers(company_id: int):
    principal = g.principal
    if principal.role in (Role.COMPANY_ADMIN, Role.COMPANY_MEMBER) and principal.company_id != company_id:
        return jsonify({"error": "Access denied"}), 403
    retailers = link_service.linked_retailers(company_id)
    if principal.role == Role.RETAILER_OPERATOR:
        retailers = [r for r in retailers if r.id == principal.retailer_id]
    return jsonify([retailer.to_dict() for retailer in retailers]), 200
