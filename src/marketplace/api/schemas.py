"""Pydantic request/response schemas for the marketplace API.

These are external contracts — separate from internal Protean commands.
Responses never carry ownership or account details beyond what the caller
already knows.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CreateIntentRequest(BaseModel):
    seller_id: str
    product_id: str
    show_id: str | None = None
    quantity: int = Field(default=1, ge=1)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "seller_id": "seller-001",
                    "product_id": "prod-001",
                    "show_id": "show-001",
                    "quantity": 1,
                }
            ]
        }
    }


class IntentIdResponse(BaseModel):
    intent_id: str


class IntentResponse(BaseModel):
    intent_id: str
    status: str
    intent_expires_at: datetime
    lock_expires_at: datetime | None = None
    converted_order_id: str | None = None


class AuthorizationResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    order_id: str
    lock_expires_at: datetime
    amount: int
    application_fee: int
    currency: str


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderResponse(BaseModel):
    order_id: str
    status: str
    batch_id: str | None = None
    quantity: int
    unit_price: float
    completion_code: str | None = None
    paid_at: datetime | None = None


class RefundRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    order_id: str
    refund_id: str
    status: str
    already_refunded: bool = False
    batch_auto_completed: bool = False


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------
class ConfirmPickupRequest(BaseModel):
    completion_code: str = Field(min_length=1, max_length=20)


class PickupResponse(BaseModel):
    batch_id: str
    status: str
    order_ids: list[str] = []


# ---------------------------------------------------------------------------
# Webhooks, sellers, sweeps
# ---------------------------------------------------------------------------
class WebhookAckResponse(BaseModel):
    received: bool = True
    event_id: str
    action: str


class SellerConnectionResponse(BaseModel):
    account_id: str
    connected: bool


class SweepResponse(BaseModel):
    evaluated: int
    transitioned: int
    skipped: int
    failed: int
    order_ids: list[str] = []


class SweepRequest(BaseModel):
    as_of: datetime | None = None


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"
    methods: list[str] | None = None


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
    failing_methods: list[str] = []
