import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

import jwt

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret-change-me"


def create_access_token(user_id: int, ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS) -> str:
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + ttl_seconds,
        "type": "access",
    }
    return jwt.encode(payload, _secret(), algorithm="HS256")


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, _secret(), algorithms=["HS256"])
    except jwt.InvalidTokenError as e:
        logger.info("token_rejected err=%s", type(e).__name__)
        return None


def parse_auth_header(auth_header: str) -> Tuple[Optional[str], Optional[str]]:
    if not auth_header:
        return None, None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1], "bearer"
    return None, None


def get_bearer_token(auth_header: str) -> Optional[str]:
    token, _scheme = parse_auth_header(auth_header)
    return token
