"""Webhook reconciler — processor events to order and seller state.

Deliveries are at-least-once and unordered. Every handler is therefore a
guarded transition plus side effects that are idempotent on their own:

- ``payment_intent.succeeded``: pending → paid, then (non-blocking) intent
  consumption, buyer notification and batch re-evaluation
- ``payment_intent.payment_failed``: logged; the order stays pending so the
  buyer can retry with the same authorization
- ``payment_intent.canceled``: pending → cancelled, intent released
- ``account.updated`` / ``capability.updated`` /
  ``account.application.deauthorized``: seller connection sync

Events that cannot be correlated are acknowledged and logged; retrying them
would never succeed.
"""

import json
from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.batch.aggregation import reevaluate_batch_safely
from marketplace.checkout.locking import ConsumeCheckoutIntent, ReleaseCheckoutIntent
from marketplace.gateway import get_gateway
from marketplace.notification.enqueue import notify_buyer_safely
from marketplace.notification.notification import NotificationEvent
from marketplace.order.lifecycle import CancelOrder, MarkOrderPaid
from marketplace.order.order import Order, OrderStatus
from marketplace.seller.connection import disconnect_seller, refresh_seller_connection, sync_from_capabilities
from marketplace.shared.errors import WebhookSignatureError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationOutcome:
    event_id: str
    event_type: str
    action: str
    order_id: str | None = None


def verify_and_parse(payload: bytes, signature: str) -> dict:
    """Check the signature with the active gateway and decode the event."""
    if not get_gateway().verify_webhook_signature(payload, signature):
        raise WebhookSignatureError("signature_verification")
    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise WebhookSignatureError("payload_decode", error=str(exc)) from exc
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookSignatureError("payload_shape")
    return event


def reconcile_event(event: dict) -> ReconciliationOutcome:
    event_type = event.get("type", "")
    event_id = event.get("id", "")
    handler = _HANDLERS.get(event_type)

    structlog.contextvars.bind_contextvars(stripe_event_id=event_id, stripe_event_type=event_type)
    try:
        if handler is None:
            logger.info("webhook_event_ignored")
            return ReconciliationOutcome(event_id, event_type, "ignored")
        return handler(event)
    finally:
        structlog.contextvars.unbind_contextvars("stripe_event_id", "stripe_event_type")


def _outcome(event: dict, action: str, order_id: str | None = None) -> ReconciliationOutcome:
    return ReconciliationOutcome(event.get("id", ""), event.get("type", ""), action, order_id)


def _payment_object(event: dict) -> dict:
    return event.get("data", {}).get("object", {}) or {}


def _correlated_order(event: dict) -> Order | None:
    payment = _payment_object(event)
    order_id = (payment.get("metadata") or {}).get("order_id")
    if not order_id:
        logger.error("webhook_missing_order_id", payment_intent_id=payment.get("id"))
        return None
    try:
        return current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        logger.warning("webhook_order_not_found", order_id=order_id, payment_intent_id=payment.get("id"))
        return None


def _reload(order_id: str) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def handle_payment_succeeded(event: dict) -> ReconciliationOutcome:
    order = _correlated_order(event)
    if order is None:
        return _outcome(event, "ignored")

    payment_intent_id = _payment_object(event).get("id")
    if order.payment_intent_id and payment_intent_id and order.payment_intent_id != payment_intent_id:
        logger.warning(
            "webhook_authorization_mismatch",
            order_id=order.id,
            stored=order.payment_intent_id,
            received=payment_intent_id,
        )

    paid = current_domain.process(
        MarkOrderPaid(order_id=str(order.id), payment_intent_id=payment_intent_id, event_id=event.get("id")),
        asynchronous=False,
    )
    current = _reload(str(order.id))

    if current.status != OrderStatus.PAID.value:
        if current.status == OrderStatus.CANCELLED.value:
            # Money moved for an order we already gave up on
            logger.error("payment_succeeded_for_cancelled_order", order_id=order.id, requires_review=True)
        else:
            logger.info("payment_succeeded_already_settled", order_id=order.id, status=current.status)
        return _outcome(event, "noop", str(order.id))

    # Also re-run on redelivery: each side effect is idempotent
    if current.checkout_intent_id:
        _consume_intent_safely(str(current.checkout_intent_id), str(current.id))
    notify_buyer_safely(str(current.id), NotificationEvent.PAYMENT_CONFIRMED)
    reevaluate_batch_safely(current.batch_id, trigger="payment_succeeded")

    return _outcome(event, "paid" if paid else "already_paid", str(order.id))


def handle_payment_failed(event: dict) -> ReconciliationOutcome:
    payment = _payment_object(event)
    error = payment.get("last_payment_error") or {}
    order_id = (payment.get("metadata") or {}).get("order_id")
    logger.warning(
        "payment_failed",
        order_id=order_id,
        payment_intent_id=payment.get("id"),
        decline_code=error.get("decline_code") or error.get("code"),
        message=error.get("message"),
    )
    return _outcome(event, "logged", order_id)


def handle_payment_canceled(event: dict) -> ReconciliationOutcome:
    order = _correlated_order(event)
    if order is None:
        return _outcome(event, "ignored")

    cancelled = current_domain.process(
        CancelOrder(order_id=str(order.id), reason="payment_canceled"),
        asynchronous=False,
    )
    if not cancelled:
        logger.info("payment_canceled_ignored", order_id=order.id, status=order.status)
        return _outcome(event, "noop", str(order.id))

    if order.checkout_intent_id:
        try:
            current_domain.process(
                ReleaseCheckoutIntent(intent_id=str(order.checkout_intent_id)),
                asynchronous=False,
            )
        except Exception:
            logger.warning("intent_release_failed", intent_id=order.checkout_intent_id, exc_info=True)
    reevaluate_batch_safely(order.batch_id, trigger="payment_canceled")

    return _outcome(event, "cancelled", str(order.id))


def handle_account_updated(event: dict) -> ReconciliationOutcome:
    account = _payment_object(event)
    account_id = account.get("id")
    if not account_id:
        logger.error("account_event_without_id")
        return _outcome(event, "ignored")

    sync_from_capabilities(
        account_id,
        charges_enabled=bool(account.get("charges_enabled")),
        payouts_enabled=bool(account.get("payouts_enabled")),
        source="account.updated",
    )
    return _outcome(event, "seller_synced")


def handle_capability_updated(event: dict) -> ReconciliationOutcome:
    capability = _payment_object(event)
    account_id = capability.get("account") or event.get("account")
    if not account_id:
        logger.error("capability_event_without_account")
        return _outcome(event, "ignored")

    refresh_seller_connection(account_id, source="capability.updated")
    return _outcome(event, "seller_synced")


def handle_account_deauthorized(event: dict) -> ReconciliationOutcome:
    account_id = event.get("account")
    if not account_id:
        logger.error("deauthorization_without_account")
        return _outcome(event, "ignored")

    disconnect_seller(account_id)
    return _outcome(event, "seller_synced")


def _consume_intent_safely(intent_id: str, order_id: str) -> None:
    try:
        current_domain.process(ConsumeCheckoutIntent(intent_id=intent_id, order_id=order_id), asynchronous=False)
    except Exception:
        logger.warning("intent_consume_failed", intent_id=intent_id, order_id=order_id, exc_info=True)


_HANDLERS = {
    "payment_intent.succeeded": handle_payment_succeeded,
    "payment_intent.payment_failed": handle_payment_failed,
    "payment_intent.canceled": handle_payment_canceled,
    "account.updated": handle_account_updated,
    "capability.updated": handle_capability_updated,
    "account.application.deauthorized": handle_account_deauthorized,
}
