"""Stripe payment gateway adapter.

Direct charges on connected accounts: every call runs in the seller's
account context (``stripe_account``) and the platform takes an
``application_fee_amount``. The API key is passed per request instead of
being set on the ``stripe`` module, so several adapters can coexist.
"""

import stripe
import structlog

from marketplace.gateway.port import (
    AccountCapabilities,
    AuthorizationResult,
    PaymentGateway,
    RefundResult,
)

logger = structlog.get_logger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300

# Stripe only accepts a fixed set of refund reasons; free text goes to metadata
_REFUND_REASON = "requested_by_customer"


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_authorization(
        self,
        amount: int,
        currency: str,
        application_fee: int,
        metadata: dict[str, str],
        connected_account: str,
        idempotency_key: str | None = None,
    ) -> AuthorizationResult:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency.lower(),
                application_fee_amount=application_fee,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.api_key,
                stripe_account=connected_account,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_authorization_failed",
                connected_account=connected_account,
                error_code=getattr(exc, "code", None),
                error=str(exc),
            )
            return AuthorizationResult(success=False, status="failed", failure_reason=str(exc))

        return AuthorizationResult(
            success=True,
            authorization_id=intent.id,
            client_secret=intent.client_secret,
            status=intent.status,
        )

    def cancel_authorization(self, authorization_id: str, connected_account: str) -> bool:
        try:
            stripe.PaymentIntent.cancel(
                authorization_id,
                api_key=self.api_key,
                stripe_account=connected_account,
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_cancel_failed",
                authorization_id=authorization_id,
                connected_account=connected_account,
                error=str(exc),
            )
            return False
        return True

    def create_refund(
        self,
        authorization_id: str,
        connected_account: str,
        idempotency_key: str,
        reason: str | None = None,
    ) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                payment_intent=authorization_id,
                reason=_REFUND_REASON,
                metadata={"note": reason} if reason else {},
                api_key=self.api_key,
                stripe_account=connected_account,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_refund_failed",
                authorization_id=authorization_id,
                connected_account=connected_account,
                error_code=getattr(exc, "code", None),
                error=str(exc),
            )
            return RefundResult(success=False, status="failed", failure_reason=str(exc))

        return RefundResult(success=True, refund_id=refund.id, status=refund.status)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not signature:
            return False
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                SIGNATURE_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError:
            return False
        return True

    def retrieve_account(self, account_id: str) -> AccountCapabilities:
        account = stripe.Account.retrieve(account_id, api_key=self.api_key)
        return AccountCapabilities(
            account_id=account.id,
            charges_enabled=bool(account.charges_enabled),
            payouts_enabled=bool(account.payouts_enabled),
            details={"details_submitted": bool(getattr(account, "details_submitted", False))},
        )
