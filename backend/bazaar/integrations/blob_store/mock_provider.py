from __future__ import annotations

from bazaar.integrations.blob_store.base import BlobStore


class MockBlobStore(BlobStore):
    """Accepts any non-blank reference. Local development only."""

    name = "mock"

    def is_valid_reference(self, ref: str) -> bool:
        return bool((ref or "").strip())
