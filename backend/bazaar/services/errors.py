from __future__ import annotations

from dataclasses import dataclass, field


def _value(member) -> str | None:
    if member is None:
        return None
    return str(getattr(member, "value", member))


class EscrowError(Exception):
    """Base of every error the escrow services return as a typed result."""

    code = "escrow_error"
    http_status = 400

    def __init__(self, message: str = "", *, action=None, current_state=None):
        self.message = message or self.code
        self.action = _value(action)
        self.current_state = _value(current_state)
        super().__init__(self.message)

    def to_dict(self) -> dict:
        out = {"error": self.code, "message": self.message}
        if self.action:
            out["action"] = self.action
        if self.current_state:
            out["current_state"] = self.current_state
        return out


class ValidationError(EscrowError):
    code = "validation_error"
    http_status = 400


class GuardViolation(EscrowError):
    code = "guard_violation"
    http_status = 409

    def __init__(self, action, current_state, reason: str = ""):
        action_value = _value(action)
        state_value = _value(current_state)
        message = f"{action_value} is not allowed while escrow is {state_value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, action=action, current_state=current_state)
        self.reason = reason


class PermissionDenied(EscrowError):
    code = "permission_denied"
    http_status = 403


class NotFoundError(EscrowError):
    code = "not_found"
    http_status = 404


class CapabilityMissing(EscrowError):
    code = "capability_missing"
    http_status = 503


class ConflictError(EscrowError):
    code = "conflict"
    http_status = 409


@dataclass
class TransitionResult:
    ok: bool
    action: str = ""
    order: dict | None = None
    error: str | None = None
    message: str = ""
    current_state: str | None = None
    http_status: int = 200

    @classmethod
    def success(cls, action, order: dict) -> "TransitionResult":
        return cls(ok=True, action=_value(action) or "", order=order)

    @classmethod
    def failure(cls, error: EscrowError, action=None) -> "TransitionResult":
        return cls(
            ok=False,
            action=error.action or _value(action) or "",
            error=error.code,
            message=error.message,
            current_state=error.current_state,
            http_status=int(error.http_status),
        )

    def to_dict(self) -> dict:
        out = {"ok": bool(self.ok), "action": self.action}
        if self.ok:
            out["order"] = self.order
            return out
        out["error"] = self.error
        out["message"] = self.message
        if self.current_state:
            out["current_state"] = self.current_state
        return out


@dataclass
class CheckoutResult:
    ok: bool
    orders: list[dict] = field(default_factory=list)
    error: str | None = None
    message: str = ""
    http_status: int = 201

    @classmethod
    def success(cls, orders: list[dict]) -> "CheckoutResult":
        return cls(ok=True, orders=orders)

    @classmethod
    def failure(cls, error: EscrowError) -> "CheckoutResult":
        return cls(ok=False, error=error.code, message=error.message, http_status=int(error.http_status))

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "orders": self.orders, "count": len(self.orders)}
        return {"ok": False, "error": self.error, "message": self.message}
