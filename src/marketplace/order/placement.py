"""Order placement — insert a pending order and reserve its stock.

The stock decrement happens here, as part of inserting the order, and only
after every check that can reject the order has passed.
"""

import structlog
from protean import handle
from protean.fields import Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.batch.assignment import assign_batch, confirm_batch_assignment
from marketplace.catalogue.product import Product
from marketplace.domain import marketplace
from marketplace.inventory.reservation import reserve_stock
from marketplace.order.order import Order
from marketplace.shared.errors import ProductUnavailable

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class PlaceOrder:
    checkout_intent_id = Identifier()
    buyer_id = Identifier(required=True)
    seller_user_id = Identifier(required=True)
    seller_entity_id = Identifier(required=True)
    product_id = Identifier(required=True)
    show_id = Identifier()
    quantity = Integer(default=1, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="usd")


@marketplace.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        quantity = command.quantity or 1

        product = current_domain.repository_for(Product).get(command.product_id)
        if not product.is_available(quantity):
            raise ProductUnavailable("placement_recheck", product_id=command.product_id, requested=quantity)

        # Raises ValidationError for self-purchase before any stock moves
        order = Order.create(
            buyer_id=command.buyer_id,
            seller_user_id=command.seller_user_id,
            seller_entity_id=command.seller_entity_id,
            product_id=command.product_id,
            show_id=command.show_id,
            checkout_intent_id=command.checkout_intent_id,
            quantity=quantity,
            unit_price=command.unit_price,
            currency=command.currency or "usd",
        )

        if not reserve_stock(command.product_id, quantity):
            raise ProductUnavailable("placement_reservation", product_id=command.product_id, requested=quantity)

        order.batch_id = assign_batch(command.buyer_id, command.seller_entity_id, command.show_id)
        current_domain.repository_for(Order).add(order)
        order.batch_id = confirm_batch_assignment(
            str(order.id), order.batch_id, command.buyer_id, command.seller_entity_id, command.show_id
        )

        logger.info(
            "order_placed",
            order_id=order.id,
            batch_id=order.batch_id,
            product_id=command.product_id,
            quantity=quantity,
        )
        return str(order.id)
