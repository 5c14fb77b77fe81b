from __future__ import annotations

from dataclasses import dataclass


@dataclass
class BlobReference:
    url: str
    provider: str


class BlobStore:
    """Validates references to blobs uploaded elsewhere (receipts, shipping proofs).

    The backend never sees file bytes; clients upload to the store and hand
    the resulting URL to the order endpoints.
    """

    name = "unknown"

    def is_valid_reference(self, ref: str) -> bool:
        raise NotImplementedError

    def normalize(self, ref: str | None) -> BlobReference | None:
        value = (ref or "").strip()
        if not value or len(value) > 1024:
            return None
        if not self.is_valid_reference(value):
            return None
        return BlobReference(url=value, provider=self.name)
