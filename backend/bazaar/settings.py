from __future__ import annotations

import os

DEFAULT_DELIVERY_FEE_PER_ITEM_DZD = 50


def env_name() -> str:
    return (os.getenv("BAZAAR_ENV", "dev") or "dev").strip().lower()


def is_production() -> bool:
    return env_name() in ("prod", "production")


def env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def env_int(name: str, default: int, *, minimum: int = 0, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def delivery_fee_per_item() -> int:
    return env_int(
        "DELIVERY_FEE_PER_ITEM_DZD",
        DEFAULT_DELIVERY_FEE_PER_ITEM_DZD,
        minimum=0,
        maximum=1_000_000,
    )


def escrow_force_degraded() -> bool:
    return env_bool("ESCROW_FORCE_DEGRADED", False)


def escrow_capability_cache_seconds() -> int:
    return env_int("ESCROW_CAPABILITY_CACHE_SECONDS", 60, minimum=0, maximum=3600)
