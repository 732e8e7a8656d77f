"""Payment authorization coordinator.

Turns a buyer's checkout intent into a pending order plus a processor-side
payment authorization on the seller's connected account:

    lock intent → check product → check seller → price → place order
        → create authorization → write authorization id back

Each step is its own committed write, so compensation survives the error
raised to the caller. Once the intent is locked, every failure releases it
back to ``intent``; once the order exists, every failure cancels it (which
restores stock); a failed write-back also cancels the authorization upstream.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from marketplace.catalogue.product import Product
from marketplace.checkout.intent import CheckoutIntent
from marketplace.checkout.locking import (
    ExpireCheckoutIntent,
    LockCheckoutIntent,
    RecordIntentAuthorization,
    ReleaseCheckoutIntent,
    lock_rejection_stage,
)
from marketplace.gateway import get_gateway
from marketplace.order.lifecycle import AttachOrderAuthorization, CancelOrder
from marketplace.order.placement import PlaceOrder
from marketplace.seller.lookup import get_seller
from marketplace.shared.clock import as_utc, utc_now
from marketplace.shared.errors import (
    AmountTooSmall,
    CheckoutRejected,
    MarketplaceError,
    PersistenceError,
    ProcessorError,
    ProductUnavailable,
    SellerNotConnected,
    SessionExpired,
)

logger = structlog.get_logger(__name__)

MINIMUM_AMOUNT = 50  # minor units
PLATFORM_FEE_RATE = 0.05


@dataclass(frozen=True)
class AuthorizationHandle:
    client_secret: str
    authorization_id: str
    lock_expires_at: datetime
    order_id: str
    amount: int
    application_fee: int
    currency: str


def compute_charge(unit_price: float, quantity: int) -> tuple[int, int]:
    """Gross amount and platform fee, both in minor units."""
    amount = round(unit_price * 100) * quantity
    return amount, round(amount * PLATFORM_FEE_RATE)


def authorize_checkout(intent_id: str, buyer_id: str, as_of: datetime | None = None) -> AuthorizationHandle:
    now = as_utc(as_of) or utc_now()
    log = logger.bind(intent_id=intent_id, buyer_id=buyer_id)

    # Diagnostic read only; the guarded lock below decides
    rejection = lock_rejection_stage(intent_id, buyer_id, now)
    lock_expires_at = current_domain.process(
        LockCheckoutIntent(intent_id=intent_id, buyer_id=buyer_id, as_of=now),
        asynchronous=False,
    )
    if lock_expires_at is None:
        if rejection == "intent_expired":
            current_domain.process(ExpireCheckoutIntent(intent_id=intent_id, as_of=now), asynchronous=False)
        stage = rejection or "intent_lock_contended"
        log.warning("checkout_lock_rejected", stage=stage)
        raise SessionExpired(stage, intent_id=intent_id)

    order_id = None
    try:
        intent = current_domain.repository_for(CheckoutIntent).get(intent_id)
        product, seller = _validate_counterparties(intent)

        amount, fee = compute_charge(product.price, intent.quantity)
        if amount < MINIMUM_AMOUNT:
            raise AmountTooSmall("pricing", amount=amount, minimum=MINIMUM_AMOUNT)

        order_id = _place_order(intent, product, seller)
        log = log.bind(order_id=order_id)

        metadata = {
            "order_id": order_id,
            "checkout_intent_id": intent_id,
            "buyer_id": str(buyer_id),
            "seller_id": str(seller.user_id),
            "seller_entity_id": str(seller.id),
            "product_id": str(product.id),
            "show_id": str(intent.show_id or ""),
        }
        result = get_gateway().create_authorization(
            amount=amount,
            currency=product.currency or "usd",
            application_fee=fee,
            metadata=metadata,
            connected_account=seller.stripe_account_id,
            idempotency_key=f"authorize_order_{order_id}",
        )
        if not result.success:
            raise ProcessorError("authorization_create", reason=result.failure_reason)

        _write_back_authorization(intent_id, order_id, result.authorization_id, seller.stripe_account_id, log)
    except MarketplaceError as exc:
        _compensate(intent_id, order_id, log)
        log.warning("checkout_failed", code=exc.code, stage=exc.stage, **exc.context)
        raise
    except Exception as exc:
        _compensate(intent_id, order_id, log)
        log.error("checkout_failed_unexpectedly", error=str(exc), exc_info=True)
        raise PersistenceError("unexpected", error=str(exc)) from exc

    log.info("checkout_authorized", authorization_id=result.authorization_id, amount=amount, fee=fee)
    return AuthorizationHandle(
        client_secret=result.client_secret,
        authorization_id=result.authorization_id,
        lock_expires_at=lock_expires_at,
        order_id=order_id,
        amount=amount,
        application_fee=fee,
        currency=product.currency or "usd",
    )


def _validate_counterparties(intent):
    try:
        product = current_domain.repository_for(Product).get(intent.product_id)
    except ObjectNotFoundError:
        raise ProductUnavailable("product_lookup", product_id=intent.product_id) from None
    if not product.is_available(intent.quantity):
        raise ProductUnavailable(
            "product_availability",
            product_id=intent.product_id,
            status=product.status,
            available=product.quantity,
            requested=intent.quantity,
        )

    seller = get_seller(intent.seller_id)
    if seller is None or not seller.is_chargeable:
        raise SellerNotConnected(
            "seller_connection",
            seller_id=intent.seller_id,
            has_account=bool(seller and seller.stripe_account_id),
        )
    return product, seller


def _place_order(intent, product, seller) -> str:
    try:
        return current_domain.process(
            PlaceOrder(
                checkout_intent_id=str(intent.id),
                buyer_id=str(intent.buyer_id),
                seller_user_id=str(seller.user_id),
                seller_entity_id=str(seller.id),
                product_id=str(product.id),
                show_id=intent.show_id,
                quantity=intent.quantity,
                unit_price=product.price,
                currency=product.currency or "usd",
            ),
            asynchronous=False,
        )
    except ValidationError as exc:
        raise CheckoutRejected("order_validation", errors=exc.messages) from exc


def _write_back_authorization(intent_id, order_id, authorization_id, connected_account, log) -> None:
    try:
        recorded = current_domain.process(
            RecordIntentAuthorization(intent_id=intent_id, authorization_id=authorization_id),
            asynchronous=False,
        )
        if recorded:
            recorded = current_domain.process(
                AttachOrderAuthorization(order_id=order_id, authorization_id=authorization_id),
                asynchronous=False,
            )
    except Exception as exc:
        log.error("authorization_write_back_raised", error=str(exc))
        recorded = False

    if not recorded:
        if not get_gateway().cancel_authorization(authorization_id, connected_account):
            log.error("authorization_cancel_failed", authorization_id=authorization_id)
        raise PersistenceError("authorization_write_back", authorization_id=authorization_id)


def _compensate(intent_id: str, order_id: str | None, log) -> None:
    """Cancel the order (if placed) and hand the intent back to the buyer."""
    if order_id is not None:
        try:
            current_domain.process(CancelOrder(order_id=order_id, reason="checkout_failed"), asynchronous=False)
        except Exception:
            log.error("compensation_cancel_order_failed", exc_info=True)
    try:
        current_domain.process(ReleaseCheckoutIntent(intent_id=intent_id), asynchronous=False)
    except Exception:
        log.error("compensation_release_intent_failed", exc_info=True)
