from datetime import datetime

from bazaar.extensions import db


class User(db.Model):
    """Marketplace account as seen by the escrow backend.

    Accounts are issued by the identity provider; this table only mirrors the
    id, contact fields and role the backend needs for authorization.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    # buyer | seller | admin ("merchant" rows from older imports count as seller)
    role = db.Column(db.String(32), nullable=False, default="buyer")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": getattr(self, "phone", None),
            "role": self.role or "buyer",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
