"""Pipeline error taxonomy.

Each error carries a coarse public ``code``/``public_message`` pair that is
safe to return to callers, and an internal ``stage`` plus context that is
only ever logged server side.
"""

from typing import Any


class MarketplaceError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    public_message = "Something went wrong. Please try again."

    def __init__(self, stage: str, **context: Any) -> None:
        self.stage = stage
        self.context = context
        super().__init__(f"{self.code} at {stage}")

    def to_response(self) -> dict[str, str]:
        return {"error": self.code, "message": self.public_message}


# ---------------------------------------------------------------------------
# Checkout (authorization coordinator)
# ---------------------------------------------------------------------------
class SessionExpired(MarketplaceError):
    """Intent missing, owned by someone else, in the wrong status, or expired."""

    code = "SESSION_EXPIRED"
    status_code = 409
    public_message = "Your checkout session expired. Please start again."


class ProductUnavailable(MarketplaceError):
    code = "PRODUCT_UNAVAILABLE"
    status_code = 409
    public_message = "This product is no longer available."


class SellerNotConnected(MarketplaceError):
    code = "SELLER_NOT_CONNECTED"
    status_code = 400
    public_message = "This seller cannot accept payments right now."


class AmountTooSmall(MarketplaceError):
    code = "AMOUNT_TOO_SMALL"
    status_code = 400
    public_message = "The order total is below the minimum chargeable amount."


class CheckoutRejected(MarketplaceError):
    code = "CHECKOUT_REJECTED"
    status_code = 400
    public_message = "This checkout cannot be completed."


class ProcessorError(MarketplaceError):
    code = "CHECKOUT_FAILED"
    status_code = 500
    public_message = "Payment could not be started. Please try again."


class PersistenceError(MarketplaceError):
    code = "CHECKOUT_FAILED"
    status_code = 500
    public_message = "Payment could not be started. Please try again."


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------
class OrderNotFound(MarketplaceError):
    code = "ORDER_NOT_FOUND"
    status_code = 404
    public_message = "Order not found."


class Forbidden(MarketplaceError):
    code = "FORBIDDEN"
    status_code = 403
    public_message = "You are not allowed to modify this order."


class OrderNotRefundable(MarketplaceError):
    code = "ORDER_NOT_REFUNDABLE"
    status_code = 400
    public_message = "Only paid orders can be refunded."


class MissingPaymentIntent(MarketplaceError):
    code = "MISSING_PAYMENT_INTENT"
    status_code = 400
    public_message = "This order has no payment to refund."


class SellerStripeNotConnected(MarketplaceError):
    code = "SELLER_STRIPE_NOT_CONNECTED"
    status_code = 400
    public_message = "Your payment account is not connected."


class RefundFailed(MarketplaceError):
    code = "STRIPE_REFUND_FAILED"
    status_code = 500
    public_message = "The refund could not be issued. Please try again."


# ---------------------------------------------------------------------------
# Pickup
# ---------------------------------------------------------------------------
class BatchNotFound(MarketplaceError):
    code = "BATCH_NOT_FOUND"
    status_code = 404
    public_message = "No pickup matches this code."


class BatchAlreadyCompleted(MarketplaceError):
    code = "BATCH_ALREADY_COMPLETED"
    status_code = 409
    public_message = "This pickup has already been completed."


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------
class WebhookSignatureError(MarketplaceError):
    code = "INVALID_SIGNATURE"
    status_code = 400
    public_message = "Invalid webhook signature."
