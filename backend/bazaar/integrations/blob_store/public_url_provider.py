from __future__ import annotations

from urllib.parse import urlparse

from bazaar.integrations.blob_store.base import BlobStore


class PublicUrlBlobStore(BlobStore):
    name = "public_url"

    def __init__(self, base_url: str = ""):
        self.base_url = (base_url or "").strip().rstrip("/")

    def is_valid_reference(self, ref: str) -> bool:
        parsed = urlparse((ref or "").strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return False
        if not self.base_url:
            return True
        return ref.startswith(self.base_url + "/")
