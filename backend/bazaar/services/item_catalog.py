from __future__ import annotations

from dataclasses import dataclass

from bazaar.extensions import db
from bazaar.models import Item


@dataclass(frozen=True)
class CatalogItem:
    item_id: int
    seller_id: int
    unit_price: int | None
    title: str = ""
    is_active: bool = True


class ItemCatalog:
    """Read-only view of the item catalog used at checkout."""

    def get(self, item_id: int) -> CatalogItem | None:
        row = db.session.get(Item, int(item_id))
        if row is None:
            return None
        price = row.price_dzd
        return CatalogItem(
            item_id=int(row.id),
            seller_id=int(row.seller_id),
            unit_price=int(price) if price is not None else None,
            title=row.title or "",
            is_active=bool(row.is_active),
        )
