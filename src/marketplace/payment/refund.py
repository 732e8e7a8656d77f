"""Seller-initiated refunds.

The processor call uses an idempotency key derived from the order id and
the local write is guarded on ``stripe_refund_id`` still being empty. A
retried request either short-circuits on the stored refund id or replays
the same processor refund, so a buyer is never refunded twice.
"""

from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.batch.aggregation import reevaluate_batch_safely
from marketplace.gateway import get_gateway
from marketplace.notification.enqueue import notify_buyer_safely
from marketplace.notification.notification import NotificationEvent
from marketplace.order.lifecycle import RecordOrderRefund
from marketplace.order.order import Order, OrderStatus
from marketplace.seller.lookup import get_seller, resolve_connected_account
from marketplace.shared.errors import (
    Forbidden,
    MissingPaymentIntent,
    OrderNotFound,
    OrderNotRefundable,
    RefundFailed,
    SellerStripeNotConnected,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RefundOutcome:
    order_id: str
    refund_id: str
    status: str
    already_refunded: bool = False
    batch_auto_completed: bool = False


def refund_idempotency_key(order_id: str) -> str:
    return f"refund_order_{order_id}"


def caller_owns_order(order: Order, user_id: str) -> bool:
    seller = get_seller(order.seller_entity_id)
    if seller is not None:
        return seller.is_owned_by(user_id)
    return str(order.seller_user_id) == str(user_id)


def refund_order(order_id: str, caller_user_id: str, reason: str | None = None) -> RefundOutcome:
    log = logger.bind(order_id=order_id, caller_user_id=caller_user_id)
    repo = current_domain.repository_for(Order)

    try:
        order = repo.get(order_id)
    except ObjectNotFoundError:
        raise OrderNotFound("refund_lookup", order_id=order_id) from None

    if not caller_owns_order(order, caller_user_id):
        raise Forbidden("refund_ownership", seller_entity_id=order.seller_entity_id)

    if order.stripe_refund_id:
        log.info("refund_already_recorded", refund_id=order.stripe_refund_id)
        return RefundOutcome(str(order.id), order.stripe_refund_id, order.status, already_refunded=True)

    if order.status != OrderStatus.PAID.value:
        raise OrderNotRefundable("refund_status", status=order.status)
    if not order.payment_intent_id:
        raise MissingPaymentIntent("refund_authorization")

    connected_account = resolve_connected_account(order.seller_entity_id, order.seller_user_id)
    if not connected_account:
        raise SellerStripeNotConnected("refund_seller_account", seller_entity_id=order.seller_entity_id)

    result = get_gateway().create_refund(
        authorization_id=order.payment_intent_id,
        connected_account=connected_account,
        idempotency_key=refund_idempotency_key(order_id),
        reason=reason,
    )
    if not result.success:
        raise RefundFailed("refund_processor", reason=result.failure_reason)

    recorded = current_domain.process(
        RecordOrderRefund(order_id=order_id, refund_id=result.refund_id),
        asynchronous=False,
    )
    if not recorded:
        # A concurrent request recorded its refund first; report that one
        current = repo.get(order_id)
        log.info("refund_recorded_concurrently", refund_id=current.stripe_refund_id)
        return RefundOutcome(str(current.id), current.stripe_refund_id, current.status, already_refunded=True)

    batch_completed = reevaluate_batch_safely(order.batch_id, trigger="refund")
    notify_buyer_safely(order_id, NotificationEvent.REFUND_INITIATED)

    log.info("order_refund_completed", refund_id=result.refund_id, batch_auto_completed=batch_completed)
    return RefundOutcome(
        order_id=str(order.id),
        refund_id=result.refund_id,
        status=OrderStatus.REFUNDED.value,
        batch_auto_completed=batch_completed,
    )
