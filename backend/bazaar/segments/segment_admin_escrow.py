from __future__ import annotations

from flask import Blueprint, jsonify, request

from bazaar.integrations.blob_store.factory import blob_store_health
from bazaar.services.admin_escrow_service import AdminEscrowService
from bazaar.services.errors import EscrowError
from bazaar.services.identity import current_actor, require_admin
from bazaar.services.order_queries import count_by_escrow_status, escrow_desk
from bazaar.services.transition_strategies import check_atomic_capability
from bazaar.utils.rate_limit import limiter_stats
from bazaar.utils.responses import error_response, result_response, unauthorized

admin_escrow_bp = Blueprint("admin_escrow_bp", __name__, url_prefix="/api/admin/escrow")


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@admin_escrow_bp.post("/orders/<order_id>/transition")
def transition(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    data = _payload()
    result = AdminEscrowService(actor).run(data.get("action"), order_id, note=data.get("note"))
    return result_response(result)


@admin_escrow_bp.get("/orders")
def desk():
    actor = current_actor()
    if actor is None:
        return unauthorized()
    try:
        require_admin(actor)
        items = escrow_desk(request.args.get("filter"), limit=request.args.get("limit"))
    except EscrowError as e:
        return error_response(e)
    return jsonify({
        "ok": True,
        "filter": (request.args.get("filter") or "pending_receipt").strip().lower(),
        "items": items,
        "count": len(items),
        "totals": count_by_escrow_status(),
    }), 200


@admin_escrow_bp.get("/capabilities")
def capabilities():
    actor = current_actor()
    if actor is None:
        return unauthorized()
    try:
        require_admin(actor)
    except EscrowError as e:
        return error_response(e)
    refresh = (request.args.get("refresh") or "").strip().lower() in ("1", "true", "yes")
    report = check_atomic_capability(refresh=refresh)
    return jsonify({
        "ok": True,
        "escrow": report.to_dict(),
        "blob_store": blob_store_health(),
        "rate_limit": limiter_stats(),
    }), 200
