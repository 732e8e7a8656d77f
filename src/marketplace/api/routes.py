"""FastAPI routes for the marketplace checkout-to-settlement pipeline.

Caller identity arrives in the ``X-User-Id`` header, set by the
authenticating gateway in front of this service.
"""

import os

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.api.schemas import (
    AuthorizationResponse,
    ConfigureGatewayRequest,
    ConfirmPickupRequest,
    CreateIntentRequest,
    GatewayConfigResponse,
    IntentIdResponse,
    IntentResponse,
    OrderResponse,
    PickupResponse,
    RefundRequest,
    RefundResponse,
    SellerConnectionResponse,
    SweepRequest,
    SweepResponse,
    WebhookAckResponse,
)
from marketplace.batch.pickup import confirm_pickup, mark_batch_ready
from marketplace.checkout.creation import CreateCheckoutIntent
from marketplace.checkout.intent import CheckoutIntent
from marketplace.gateway import get_gateway
from marketplace.gateway.fake_adapter import FakeGateway
from marketplace.order.order import Order
from marketplace.order.sweeps import complete_stale_orders, expire_pending_orders
from marketplace.payment.authorization import authorize_checkout
from marketplace.payment.refund import refund_order
from marketplace.payment.webhook import reconcile_event, verify_and_parse
from marketplace.seller.connection import refresh_seller_connection

# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("/intents", status_code=201, response_model=IntentIdResponse)
async def create_intent(body: CreateIntentRequest, x_user_id: str = Header()) -> IntentIdResponse:
    """Start a checkout session for one product."""
    command = CreateCheckoutIntent(
        buyer_id=x_user_id,
        seller_id=body.seller_id,
        product_id=body.product_id,
        show_id=body.show_id,
        quantity=body.quantity,
    )
    intent_id = current_domain.process(command, asynchronous=False)
    return IntentIdResponse(intent_id=intent_id)


@checkout_router.get("/intents/{intent_id}", response_model=IntentResponse)
async def get_intent(intent_id: str, x_user_id: str = Header()) -> IntentResponse:
    """Poll an intent; ``converted_order_id`` is set once payment succeeded."""
    intent = current_domain.repository_for(CheckoutIntent).get(intent_id)
    if str(intent.buyer_id) != x_user_id:
        raise ObjectNotFoundError(f"CheckoutIntent {intent_id} not found")

    return IntentResponse(
        intent_id=str(intent.id),
        status=intent.effective_status(),
        intent_expires_at=intent.intent_expires_at,
        lock_expires_at=intent.lock_expires_at,
        converted_order_id=intent.converted_order_id,
    )


@checkout_router.post("/intents/{intent_id}/authorize", response_model=AuthorizationResponse)
def authorize_intent(intent_id: str, x_user_id: str = Header()) -> AuthorizationResponse:
    """Lock the intent, place a pending order and create the payment authorization."""
    handle = authorize_checkout(intent_id, x_user_id)
    return AuthorizationResponse(
        client_secret=handle.client_secret,
        payment_intent_id=handle.authorization_id,
        order_id=handle.order_id,
        lock_expires_at=handle.lock_expires_at,
        amount=handle.amount,
        application_fee=handle.application_fee,
        currency=handle.currency,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, x_user_id: str = Header()) -> OrderResponse:
    order = current_domain.repository_for(Order).get(order_id)
    is_buyer = str(order.buyer_id) == x_user_id
    if not is_buyer and str(order.seller_user_id) != x_user_id:
        raise ObjectNotFoundError(f"Order {order_id} not found")

    return OrderResponse(
        order_id=str(order.id),
        status=order.status,
        batch_id=order.batch_id,
        quantity=order.quantity,
        unit_price=order.unit_price,
        completion_code=order.completion_code if is_buyer else None,
        paid_at=order.paid_at,
    )


@order_router.post("/{order_id}/refund", response_model=RefundResponse)
def refund(order_id: str, body: RefundRequest | None = None, x_user_id: str = Header()) -> RefundResponse:
    """Seller-initiated full refund. Safe to retry."""
    outcome = refund_order(order_id, x_user_id, reason=body.reason if body else None)
    return RefundResponse(
        order_id=outcome.order_id,
        refund_id=outcome.refund_id,
        status=outcome.status,
        already_refunded=outcome.already_refunded,
        batch_auto_completed=outcome.batch_auto_completed,
    )


# ---------------------------------------------------------------------------
# Batch Router
# ---------------------------------------------------------------------------
batch_router = APIRouter(prefix="/batches", tags=["batches"])


@batch_router.post("/pickup", response_model=PickupResponse)
async def pickup(body: ConfirmPickupRequest, x_user_id: str = Header()) -> PickupResponse:
    """Confirm the buyer collected the batch, by its completion code."""
    result = confirm_pickup(body.completion_code, x_user_id)
    return PickupResponse(batch_id=result.batch_id, status=result.status, order_ids=result.order_ids)


@batch_router.post("/{batch_id}/ready", response_model=PickupResponse)
async def ready(batch_id: str, x_user_id: str = Header()) -> PickupResponse:
    result = mark_batch_ready(batch_id, x_user_id)
    return PickupResponse(batch_id=result.batch_id, status=result.status, order_ids=result.order_ids)


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(request: Request, stripe_signature: str = Header(default="")) -> WebhookAckResponse:
    """Receive processor events, including events on connected accounts."""
    payload = await request.body()
    event = verify_and_parse(payload, stripe_signature)
    outcome = await run_in_threadpool(reconcile_event, event)
    return WebhookAckResponse(event_id=outcome.event_id, action=outcome.action)


# ---------------------------------------------------------------------------
# Seller Router
# ---------------------------------------------------------------------------
seller_router = APIRouter(prefix="/sellers", tags=["sellers"])


@seller_router.get("/stripe/return", response_model=SellerConnectionResponse)
def stripe_return(account: str) -> SellerConnectionResponse:
    """Onboarding return callback: re-read the account's capabilities."""
    connected = refresh_seller_connection(account, source="return_callback")
    if connected is None:
        raise HTTPException(status_code=404, detail="Unknown account")
    return SellerConnectionResponse(account_id=account, connected=connected)


# ---------------------------------------------------------------------------
# Sweep / maintenance Router
# ---------------------------------------------------------------------------
sweep_router = APIRouter(prefix="/sweeps", tags=["maintenance"])


@sweep_router.post("/complete-stale-orders", response_model=SweepResponse)
async def sweep_stale_orders(body: SweepRequest | None = None) -> SweepResponse:
    """Daily: complete orders paid more than five days ago."""
    summary = complete_stale_orders(as_of=body.as_of if body else None)
    return SweepResponse(**summary.to_dict())


@sweep_router.post("/expire-pending-orders", response_model=SweepResponse)
async def sweep_pending_orders(body: SweepRequest | None = None) -> SweepResponse:
    summary = expire_pending_orders(as_of=body.as_of if body else None)
    return SweepResponse(**summary.to_dict())


@sweep_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
        methods=body.methods,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
        failing_methods=sorted(gateway.failing_methods),
    )


ALL_ROUTERS = [checkout_router, order_router, batch_router, webhook_router, seller_router, sweep_router]
