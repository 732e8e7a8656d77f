"""Buyer notification enqueue — command, handler and non-blocking helper."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.notification.notification import Notification, NotificationEvent
from marketplace.order.order import Order
from marketplace.seller.lookup import seller_display_name

logger = structlog.get_logger(__name__)

_MESSAGES = {
    NotificationEvent.PAYMENT_CONFIRMED: (
        "Payment Confirmed",
        "Your payment to {seller} was successful. Show code {code} at pickup.",
    ),
    NotificationEvent.REFUND_INITIATED: (
        "Refund initiated",
        "{seller} refunded your order. Funds usually arrive within 5-10 business days.",
    ),
}


@marketplace.command(part_of="Notification")
class EnqueueOrderNotification:
    order_id = Identifier(required=True)
    event = String(choices=NotificationEvent, required=True)


@marketplace.command_handler(part_of=Notification)
class NotificationHandler:
    @handle(EnqueueOrderNotification)
    def enqueue(self, command):
        """Returns the new notification id, or None when one already exists."""
        order = current_domain.repository_for(Order).get(command.order_id)
        repo = current_domain.repository_for(Notification)

        existing = repo._dao.query.filter(
            user_id=order.buyer_id,
            order_id=command.order_id,
            event=command.event,
        ).all()
        if existing.total:
            logger.info("notification_duplicate_skipped", order_id=command.order_id, notification_event=command.event)
            return None

        title, template = _MESSAGES[NotificationEvent(command.event)]
        notification = Notification(
            user_id=order.buyer_id,
            event=command.event,
            title=title,
            body=template.format(
                seller=seller_display_name(order.seller_entity_id, order.seller_user_id),
                code=order.completion_code,
            ),
            order_id=command.order_id,
            batch_id=order.batch_id,
        )
        repo.add(notification)
        return str(notification.id)


def notify_buyer_safely(order_id: str, event: NotificationEvent) -> str | None:
    """Best-effort enqueue; a failure is logged and never reaches the caller."""
    try:
        return current_domain.process(
            EnqueueOrderNotification(order_id=order_id, event=event.value),
            asynchronous=False,
        )
    except Exception:
        logger.warning("notification_enqueue_failed", order_id=order_id, notification_event=event.value, exc_info=True)
        return None
