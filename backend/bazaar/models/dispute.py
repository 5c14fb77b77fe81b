from datetime import datetime

from bazaar.extensions import db
from bazaar.models.enums import DisputeStatus, coerce_enum, enum_values


class Dispute(db.Model):
    """One dispute episode per order.

    Opened by the buyer or the seller, mutated afterwards only by the admin
    ruling that releases or refunds the escrow.
    """

    __tablename__ = "disputes"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)

    opened_by_user_id = db.Column(db.Integer, nullable=True)
    opened_by_role = db.Column(db.String(16), nullable=False, default="buyer")
    reason = db.Column(db.String(500), nullable=True)

    status = db.Column(
        db.Enum(
            DisputeStatus,
            name="dispute_status",
            native_enum=False,
            length=16,
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=DisputeStatus.OPEN,
    )
    resolution_action = db.Column(db.String(32), nullable=True)
    resolution_note = db.Column(db.String(500), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        status = coerce_enum(DisputeStatus, self.status, DisputeStatus.OPEN)
        return {
            "id": int(self.id),
            "reason": self.reason or "",
            "status": status.value,
            "opened_by_role": self.opened_by_role or "",
            "resolution_action": self.resolution_action or None,
            "resolution_note": self.resolution_note or None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
