from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from flask import has_request_context
from sqlalchemy.exc import SQLAlchemyError

from bazaar.extensions import db
from bazaar.models import PlatformEvent
from bazaar.utils.observability import get_request_id

logger = logging.getLogger(__name__)


def _safe_value(value: Any):
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


def _safe_json(data: Any) -> str:
    normalized = _safe_value(data if isinstance(data, dict) else {"value": data})
    return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)


def log_event(
    event_type: str,
    *,
    actor_user_id: int | None = None,
    subject_type: str | None = None,
    subject_id: int | str | None = None,
    severity: str = "INFO",
    request_id: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Best-effort audit event.

    Written inside a savepoint so a missing ``platform_events`` table (or any
    other database error) never rolls back the caller's transaction.
    Commit is left to the caller.
    """
    if not request_id and has_request_context():
        request_id = get_request_id()
    event = PlatformEvent(
        event_type=(event_type or "unknown").strip()[:80],
        actor_user_id=int(actor_user_id) if actor_user_id is not None else None,
        subject_type=(subject_type or "").strip()[:80] or None,
        subject_id=str(subject_id)[:120] if subject_id is not None else None,
        request_id=(request_id or "").strip()[:80] or None,
        severity=(severity or "INFO").strip().upper()[:16] or "INFO",
        metadata_json=_safe_json(metadata or {}),
    )
    # Caller's pending rows flush here, outside the guard; their errors are theirs.
    db.session.flush()
    try:
        with db.session.begin_nested():
            db.session.add(event)
            db.session.flush()
    except SQLAlchemyError as e:
        logger.warning("platform_event_write_failed event=%s err=%s", event_type, e)
        return None
    return event
