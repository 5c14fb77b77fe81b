from __future__ import annotations

from flask import Blueprint, jsonify, request

from bazaar.services.errors import EscrowError
from bazaar.services.identity import current_actor
from bazaar.services.order_queries import orders_for_seller
from bazaar.services.seller_actions import SellerActionService
from bazaar.utils.responses import error_response, result_response, unauthorized

seller_orders_bp = Blueprint("seller_orders_bp", __name__, url_prefix="/api/seller")


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@seller_orders_bp.get("/orders")
def seller_orders():
    actor = current_actor()
    if actor is None:
        return unauthorized()
    try:
        items = orders_for_seller(actor, limit=request.args.get("limit"))
    except EscrowError as e:
        return error_response(e)
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@seller_orders_bp.post("/orders/<order_id>/ship")
def mark_shipped(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    data = _payload()
    result = SellerActionService(actor).mark_shipped(order_id, data.get("proof_url"))
    return result_response(result)


@seller_orders_bp.post("/orders/<order_id>/dispute")
def seller_dispute(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    data = _payload()
    result = SellerActionService(actor).open_dispute(order_id, data.get("reason") or "")
    return result_response(result)
