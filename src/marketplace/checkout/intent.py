"""CheckoutIntent — a buyer's checkout attempt and the unit checkout locks on.

State Machine:
    INTENT → LOCKED → CONSUMED
    LOCKED → INTENT     (released after a failed authorization)
    INTENT → EXPIRED    (lazily, by the first reader past the TTL)

Expiry is a pure function of stored timestamps; nothing cancels intents in
the background. Status changes go through guarded writes in
``checkout.locking``, never through in-memory mutation.
"""

from datetime import datetime, timedelta
from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.shared.clock import has_passed, utc_now


class IntentStatus(Enum):
    INTENT = "intent"
    LOCKED = "locked"
    CONSUMED = "consumed"
    EXPIRED = "expired"


INTENT_TTL = timedelta(minutes=5)
LOCK_TTL = timedelta(minutes=4)


@marketplace.aggregate
class CheckoutIntent:
    buyer_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    product_id = Identifier(required=True)
    show_id = Identifier()
    quantity = Integer(default=1, min_value=1)
    status = String(choices=IntentStatus, default=IntentStatus.INTENT.value)
    intent_expires_at = DateTime(required=True)
    lock_expires_at = DateTime()
    stripe_payment_intent_id = String(max_length=255)
    converted_order_id = Identifier()
    created_at = DateTime()

    @classmethod
    def create(
        cls,
        buyer_id: str,
        seller_id: str,
        product_id: str,
        quantity: int = 1,
        show_id: str | None = None,
        now: datetime | None = None,
    ):
        now = now or utc_now()
        return cls(
            buyer_id=buyer_id,
            seller_id=seller_id,
            product_id=product_id,
            show_id=show_id,
            quantity=quantity,
            intent_expires_at=now + INTENT_TTL,
            created_at=now,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.status == IntentStatus.INTENT.value and has_passed(self.intent_expires_at, now)

    def lock_is_stale(self, now: datetime | None = None) -> bool:
        return self.status == IntentStatus.LOCKED.value and has_passed(self.lock_expires_at, now)

    def effective_status(self, now: datetime | None = None) -> str:
        """Status as a reader should see it, with TTLs applied.

        A lock past its expiry reads as expired: the authorization it guarded
        is abandoned and the order behind it is swept.
        """
        if self.is_expired(now) or self.lock_is_stale(now):
            return IntentStatus.EXPIRED.value
        return self.status
