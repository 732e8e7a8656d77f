"""Order lifecycle — guarded status transitions.

Every command here is a single conditional write ``WHERE id = ? AND status
IN (expected)``. A handler that finds zero matching rows returns False:
another handler already made the transition, which is success for the
caller. Stock is restored only by the handler that wins a cancellation or
refund.
"""

import structlog
from protean import handle
from protean.fields import Boolean, DateTime, Identifier, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.inventory.reservation import restore_stock
from marketplace.order.order import Order, OrderStatus, sources_for
from marketplace.shared.clock import utc_now
from marketplace.shared.transitions import conditional_update, transition_status

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class AttachOrderAuthorization:
    order_id = Identifier(required=True)
    authorization_id = String(required=True, max_length=255)


@marketplace.command(part_of="Order")
class MarkOrderPaid:
    order_id = Identifier(required=True)
    payment_intent_id = String(max_length=255)
    event_id = String(max_length=255)
    as_of = DateTime()


@marketplace.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=255)
    include_paid = Boolean(default=False)


@marketplace.command(part_of="Order")
class FulfillOrder:
    order_id = Identifier(required=True)


@marketplace.command(part_of="Order")
class CompleteOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=255)


@marketplace.command(part_of="Order")
class RecordOrderRefund:
    order_id = Identifier(required=True)
    refund_id = String(required=True, max_length=255)


@marketplace.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(AttachOrderAuthorization)
    def attach_authorization(self, command):
        return conditional_update(
            Order,
            command.order_id,
            guard={"status": OrderStatus.PENDING.value},
            changes={"payment_intent_id": command.authorization_id},
        )

    @handle(MarkOrderPaid)
    def mark_paid(self, command):
        changes = {"paid_at": command.as_of or utc_now()}
        if command.payment_intent_id:
            changes["payment_intent_id"] = command.payment_intent_id
        if command.event_id:
            changes["last_stripe_event_id"] = command.event_id

        paid = transition_status(Order, command.order_id, OrderStatus.PENDING, OrderStatus.PAID, **changes)
        if paid:
            logger.info("order_paid", order_id=command.order_id, event_id=command.event_id)
        return paid

    @handle(CancelOrder)
    def cancel(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        expected = [OrderStatus.PENDING]
        if command.include_paid:
            expected = sources_for(OrderStatus.CANCELLED)

        cancelled = transition_status(
            Order,
            command.order_id,
            expected,
            OrderStatus.CANCELLED,
            cancelled_at=utc_now(),
        )
        if cancelled:
            restore_stock(order.product_id, order.quantity)
            logger.info("order_cancelled", order_id=command.order_id, reason=command.reason)
        return cancelled

    @handle(FulfillOrder)
    def fulfill(self, command):
        return transition_status(
            Order,
            command.order_id,
            sources_for(OrderStatus.FULFILLED),
            OrderStatus.FULFILLED,
            fulfilled_at=utc_now(),
        )

    @handle(CompleteOrder)
    def complete(self, command):
        completed = transition_status(
            Order,
            command.order_id,
            sources_for(OrderStatus.COMPLETED),
            OrderStatus.COMPLETED,
            completed_at=utc_now(),
        )
        if completed:
            logger.info("order_completed", order_id=command.order_id, reason=command.reason)
        return completed

    @handle(RecordOrderRefund)
    def record_refund(self, command):
        """Guarded on the refund id still being empty rather than on status.

        The processor refund has already happened when this runs, so the
        order must record it even if a sweep moved the status meanwhile.
        """
        order = current_domain.repository_for(Order).get(command.order_id)
        refunded = conditional_update(
            Order,
            command.order_id,
            guard={"stripe_refund_id__isnull": True},
            changes={
                "status": OrderStatus.REFUNDED.value,
                "stripe_refund_id": command.refund_id,
                "refunded_at": utc_now(),
            },
        )
        if refunded:
            restore_stock(order.product_id, order.quantity)
            logger.info("order_refunded", order_id=command.order_id, refund_id=command.refund_id)
        return refunded
