from __future__ import annotations

from dataclasses import dataclass

from flask import request

from bazaar.extensions import db
from bazaar.models import User
from bazaar.services.errors import PermissionDenied
from bazaar.utils.jwt_utils import decode_token, get_bearer_token

_SELLER_ROLES = ("seller", "merchant", "vendor")


@dataclass(frozen=True)
class Actor:
    """The authenticated caller: user id plus the account-level role."""

    user_id: int
    role: str = "buyer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _normalize_role(raw: str | None) -> str:
    role = (raw or "buyer").strip().lower()
    if role in _SELLER_ROLES:
        return "seller"
    if role in ("buyer", "admin"):
        return role
    return "buyer"


def actor_for_user(user: User | None) -> Actor | None:
    if user is None:
        return None
    return Actor(user_id=int(user.id), role=_normalize_role(getattr(user, "role", None)))


def current_actor() -> Actor | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    return actor_for_user(db.session.get(User, uid))


def require_admin(actor: Actor | None) -> Actor:
    if actor is None or not actor.is_admin:
        raise PermissionDenied("admin role required")
    return actor
