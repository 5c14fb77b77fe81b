from __future__ import annotations

from flask import Blueprint, jsonify, request

from bazaar.services.buyer_actions import BuyerActionService
from bazaar.services.checkout_service import CheckoutService
from bazaar.services.errors import EscrowError
from bazaar.services.identity import current_actor
from bazaar.services.order_queries import (
    load_visible_order,
    order_timeline,
    order_view,
    orders_for_buyer,
    receipt_summary,
)
from bazaar.utils.responses import error_response, result_response, unauthorized

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@orders_bp.post("/checkout/quote")
def checkout_quote():
    data = _payload()
    result = CheckoutService(current_actor()).quote(data.get("lines"))
    return result_response(result)


@orders_bp.post("/orders")
def create_order():
    actor = current_actor()
    if actor is None:
        return unauthorized()
    data = _payload()
    line = {"item_id": data.get("item_id"), "quantity": data.get("quantity", 1)}
    result = CheckoutService(actor).place([line], data)
    return result_response(result, success_status=201)


@orders_bp.post("/orders/checkout")
def checkout_cart():
    actor = current_actor()
    if actor is None:
        return unauthorized()
    data = _payload()
    result = CheckoutService(actor).place(data.get("lines"), data)
    return result_response(result, success_status=201)


@orders_bp.get("/orders/my")
def my_orders():
    actor = current_actor()
    if actor is None:
        return unauthorized()
    try:
        items = orders_for_buyer(actor, limit=request.args.get("limit"))
    except EscrowError as e:
        return error_response(e)
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@orders_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    try:
        order, role = load_visible_order(actor, order_id)
    except EscrowError as e:
        return error_response(e)
    return jsonify({"ok": True, "order": order_view(order, role)}), 200


@orders_bp.get("/orders/<order_id>/receipt-summary")
def get_receipt_summary(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    try:
        order, _role = load_visible_order(actor, order_id)
    except EscrowError as e:
        return error_response(e)
    return jsonify({"ok": True, "receipt": receipt_summary(order)}), 200


@orders_bp.get("/orders/<order_id>/timeline")
def get_timeline(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    try:
        order, _role = load_visible_order(actor, order_id)
    except EscrowError as e:
        return error_response(e)
    items = order_timeline(order)
    return jsonify({"ok": True, "order_id": order.id, "items": items}), 200


@orders_bp.post("/orders/<order_id>/receipt")
def submit_receipt(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    result = BuyerActionService(actor).submit_receipt(order_id, _payload().get("receipt_url"))
    return result_response(result)


@orders_bp.post("/orders/<order_id>/confirm-delivery")
def confirm_delivery(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    result = BuyerActionService(actor).confirm_delivery(order_id)
    return result_response(result)


@orders_bp.post("/orders/<order_id>/dispute")
def buyer_dispute(order_id: str):
    actor = current_actor()
    if actor is None:
        return unauthorized()
    result = BuyerActionService(actor).open_dispute(order_id, _payload().get("reason") or "")
    return result_response(result)
