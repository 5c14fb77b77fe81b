from __future__ import annotations

import os

from bazaar.integrations.blob_store.base import BlobStore
from bazaar.integrations.blob_store.mock_provider import MockBlobStore
from bazaar.integrations.blob_store.public_url_provider import PublicUrlBlobStore
from bazaar.integrations.common import IntegrationMisconfiguredError


def build_blob_store() -> BlobStore:
    provider = (os.getenv("BLOB_STORE_PROVIDER") or "public_url").strip().lower()
    if provider == "mock":
        return MockBlobStore()
    if provider != "public_url":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:blob_store_provider={provider}")
    return PublicUrlBlobStore(base_url=os.getenv("BLOB_PUBLIC_BASE_URL") or "")


def blob_store_health() -> dict:
    provider = (os.getenv("BLOB_STORE_PROVIDER") or "public_url").strip().lower()
    base_url = (os.getenv("BLOB_PUBLIC_BASE_URL") or "").strip()
    if provider not in ("mock", "public_url"):
        status = "misconfigured"
    elif provider == "mock":
        status = "mock"
    else:
        status = "configured"
    return {
        "status": status,
        "provider": provider,
        "base_url_pinned": bool(base_url),
    }
