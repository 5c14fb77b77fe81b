from datetime import datetime

from bazaar.extensions import db


class Item(db.Model):
    """Catalog row read at checkout for pricing and seller ownership.

    Listing CRUD lives in the catalog service; the escrow backend never
    writes this table outside of fixtures.
    """

    __tablename__ = "marketplace_items"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False, default="")
    price_dzd = db.Column(db.Integer, nullable=True)
    wilaya = db.Column(db.String(64), nullable=True)
    image_url = db.Column(db.String(1024), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "seller_id": int(self.seller_id) if self.seller_id is not None else None,
            "title": self.title or "",
            "price_dzd": int(self.price_dzd) if self.price_dzd is not None else None,
            "wilaya": self.wilaya or "",
            "image_url": self.image_url or "",
            "is_active": bool(self.is_active),
        }
