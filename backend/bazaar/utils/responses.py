from __future__ import annotations

from flask import g, jsonify


def _with_trace(payload: dict, status: int) -> dict:
    payload.setdefault("status", int(status))
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def json_error(error: str, message: str, status: int, **extra):
    payload = {"ok": False, "error": error, "message": message, **extra}
    return jsonify(_with_trace(payload, status)), int(status)


def error_response(exc):
    """Render an ``EscrowError`` with the API error contract."""
    return jsonify(_with_trace({"ok": False, **exc.to_dict()}, exc.http_status)), int(exc.http_status)


def result_response(result, *, success_status: int = 200):
    """Render a ``TransitionResult``/``CheckoutResult``/``QuoteResult``."""
    payload = result.to_dict()
    if result.ok:
        return jsonify(payload), int(success_status)
    return jsonify(_with_trace(payload, result.http_status)), int(result.http_status)


def unauthorized():
    return json_error("unauthorized", "Unauthorized", 401)
