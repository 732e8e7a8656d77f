"""Checkout intent creation — command and handler."""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Identifier, Integer
from protean.utils.globals import current_domain

from marketplace.catalogue.product import Product
from marketplace.checkout.intent import CheckoutIntent
from marketplace.domain import marketplace
from marketplace.shared.clock import as_utc
from marketplace.shared.errors import ProductUnavailable

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="CheckoutIntent")
class CreateCheckoutIntent:
    """Start a checkout for one product from one seller."""

    buyer_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    product_id = Identifier(required=True)
    show_id = Identifier()
    quantity = Integer(default=1, min_value=1)
    as_of = DateTime()


@marketplace.command_handler(part_of=CheckoutIntent)
class CreateCheckoutIntentHandler:
    @handle(CreateCheckoutIntent)
    def create_intent(self, command):
        try:
            product = current_domain.repository_for(Product).get(command.product_id)
        except ObjectNotFoundError:
            raise ProductUnavailable("intent_product_lookup", product_id=command.product_id) from None

        if str(product.seller_entity_id) != str(command.seller_id):
            raise ValidationError({"seller_id": ["Product is not sold by this seller"]})

        quantity = command.quantity or 1
        if not product.is_available(quantity):
            raise ProductUnavailable(
                "intent_availability",
                product_id=command.product_id,
                requested=quantity,
                available=product.quantity,
            )

        intent = CheckoutIntent.create(
            buyer_id=command.buyer_id,
            seller_id=command.seller_id,
            product_id=command.product_id,
            show_id=command.show_id,
            quantity=quantity,
            now=as_utc(command.as_of),
        )
        current_domain.repository_for(CheckoutIntent).add(intent)

        logger.info(
            "checkout_intent_created",
            intent_id=intent.id,
            buyer_id=command.buyer_id,
            product_id=command.product_id,
            expires_at=intent.intent_expires_at.isoformat(),
        )
        return str(intent.id)
