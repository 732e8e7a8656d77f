"""Order aggregate — one purchase of one product from one seller.

State Machine:
    PENDING → PAID → FULFILLED → COMPLETED
    PENDING → CANCELLED
    PAID → CANCELLED
    PAID → REFUNDED
    PAID → COMPLETED        (staleness sweep)

COMPLETED, CANCELLED and REFUNDED are terminal. Transitions are applied by
``order.lifecycle`` as writes guarded on the expected prior status; the
table below is the single source for which prior statuses a target accepts.
"""

import secrets
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.shared.clock import utc_now

# No 0/O or 1/I, so codes survive being read aloud at pickup
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
COMPLETION_CODE_LENGTH = 6


class OrderStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FULFILLED = "fulfilled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {
        OrderStatus.FULFILLED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.FULFILLED: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

TERMINAL_STATUSES = frozenset(status for status, targets in _VALID_TRANSITIONS.items() if not targets)


def sources_for(target: OrderStatus) -> list[OrderStatus]:
    """Statuses an order may be in for a transition to ``target``."""
    return [source for source, targets in _VALID_TRANSITIONS.items() if target in targets]


def can_transition(current: str, target: OrderStatus) -> bool:
    return target in _VALID_TRANSITIONS.get(OrderStatus(current), set())


def generate_completion_code(length: int = COMPLETION_CODE_LENGTH) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


@marketplace.aggregate
class Order:
    buyer_id = Identifier(required=True)
    seller_user_id = Identifier(required=True)
    seller_entity_id = Identifier(required=True)
    product_id = Identifier(required=True)
    show_id = Identifier()
    batch_id = Identifier()
    checkout_intent_id = Identifier()
    quantity = Integer(default=1, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="usd")
    completion_code = String(max_length=20)
    payment_intent_id = String(max_length=255)
    stripe_refund_id = String(max_length=255)
    last_stripe_event_id = String(max_length=255)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    created_at = DateTime()
    paid_at = DateTime()
    fulfilled_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()

    @invariant.post
    def refund_id_only_on_refunded_orders(self):
        if self.stripe_refund_id and self.status != OrderStatus.REFUNDED.value:
            raise ValidationError({"stripe_refund_id": ["Only refunded orders carry a refund id"]})

    @classmethod
    def create(
        cls,
        buyer_id: str,
        seller_user_id: str,
        seller_entity_id: str,
        product_id: str,
        unit_price: float,
        quantity: int = 1,
        currency: str = "usd",
        show_id: str | None = None,
        batch_id: str | None = None,
        checkout_intent_id: str | None = None,
    ):
        if str(buyer_id) == str(seller_user_id):
            raise ValidationError({"buyer_id": ["Sellers cannot buy their own products"]})

        return cls(
            buyer_id=buyer_id,
            seller_user_id=seller_user_id,
            seller_entity_id=seller_entity_id,
            product_id=product_id,
            show_id=show_id,
            batch_id=batch_id,
            checkout_intent_id=checkout_intent_id,
            quantity=quantity,
            unit_price=unit_price,
            currency=currency,
            completion_code=generate_completion_code(),
            created_at=utc_now(),
        )

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    @property
    def amount_minor(self) -> int:
        """Gross amount in minor currency units."""
        return round(self.unit_price * 100) * (self.quantity or 1)
