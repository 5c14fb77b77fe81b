from bazaar.models.enums import DisputeStatus, EscrowStatus, OrderStatus
from bazaar.models.user import User
from bazaar.models.item import Item
from bazaar.models.order import Order, order_payload
from bazaar.models.dispute import Dispute
from bazaar.models.escrow_transition import EscrowTransition
from bazaar.models.platform_event import PlatformEvent

__all__ = [
    "Dispute",
    "DisputeStatus",
    "EscrowStatus",
    "EscrowTransition",
    "Item",
    "Order",
    "OrderStatus",
    "PlatformEvent",
    "User",
    "order_payload",
]
