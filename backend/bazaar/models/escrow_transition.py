from datetime import datetime

from bazaar.extensions import db


class EscrowTransition(db.Model):
    """Append-only ledger of applied escrow transitions.

    ``idempotency_key`` is ``<action>:v<version>`` of the row being replaced,
    so a given order version can only ever be transitioned once.
    """

    __tablename__ = "escrow_transitions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "idempotency_key", name="uq_escrow_transition_order_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(32), nullable=False, default="")
    to_status = db.Column(db.String(32), nullable=False)
    order_status = db.Column(db.String(24), nullable=False, default="")
    actor_type = db.Column(db.String(16), nullable=False, default="system")
    actor_id = db.Column(db.Integer, nullable=True)
    idempotency_key = db.Column(db.String(160), nullable=False)
    note = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": self.order_id or "",
            "action": self.action or "",
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "order_status": self.order_status or "",
            "actor_type": self.actor_type or "",
            "actor_id": int(self.actor_id) if self.actor_id is not None else None,
            "note": self.note or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
