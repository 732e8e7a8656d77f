"""Notification — buyer-facing messages produced by the pipeline.

Delivery and presentation belong to the messaging layer; the pipeline only
enqueues rows, at most one per (user, order, event).
"""

from enum import Enum

from protean.fields import Boolean, DateTime, Identifier, String, Text

from marketplace.domain import marketplace
from marketplace.shared.clock import utc_now


class NotificationEvent(Enum):
    PAYMENT_CONFIRMED = "payment_confirmed"
    REFUND_INITIATED = "refund_initiated"


@marketplace.aggregate
class Notification:
    user_id = Identifier(required=True)
    event = String(choices=NotificationEvent, required=True)
    title = String(required=True, max_length=255)
    body = Text()
    order_id = Identifier()
    batch_id = Identifier()
    read = Boolean(default=False)
    created_at = DateTime(default=utc_now)
