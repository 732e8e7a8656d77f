"""Inventory reservation — stock decrement and restore on the Product row.

Both directions are compare-and-swap writes on the observed quantity. A
lost race re-reads the row and retries a bounded number of times, so two
buyers can never both take the last unit.
"""

import structlog
from protean.utils.globals import current_domain

from marketplace.catalogue.product import Product, ProductStatus
from marketplace.shared.transitions import conditional_update

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 5


def reserve_stock(product_id: str, quantity: int) -> bool:
    """Take ``quantity`` units. Returns False when stock is not available."""
    repo = current_domain.repository_for(Product)

    for attempt in range(1, MAX_ATTEMPTS + 1):
        product = repo.get(product_id)
        if not product.is_available(quantity):
            logger.info(
                "stock_unavailable",
                product_id=product_id,
                requested=quantity,
                available=product.quantity,
                status=product.status,
            )
            return False

        remaining = product.quantity - quantity
        status = ProductStatus.SOLD_OUT if remaining == 0 else ProductStatus.ACTIVE
        if conditional_update(
            Product,
            product_id,
            guard={"status": ProductStatus.ACTIVE.value, "quantity": product.quantity},
            changes={"quantity": remaining, "status": status.value},
        ):
            logger.info("stock_reserved", product_id=product_id, quantity=quantity, remaining=remaining)
            return True

        logger.info("stock_reservation_contended", product_id=product_id, attempt=attempt)

    logger.warning("stock_reservation_gave_up", product_id=product_id, attempts=MAX_ATTEMPTS)
    return False


def restore_stock(product_id: str, quantity: int) -> bool:
    """Put ``quantity`` units back, reactivating a sold-out product.

    Callers restore only after winning the order transition that releases
    the units, so each reservation is restored at most once.
    """
    repo = current_domain.repository_for(Product)

    for _ in range(MAX_ATTEMPTS):
        product = repo.get(product_id)
        changes = {"quantity": (product.quantity or 0) + quantity}
        if product.status == ProductStatus.SOLD_OUT.value:
            changes["status"] = ProductStatus.ACTIVE.value

        if conditional_update(
            Product,
            product_id,
            guard={"status": product.status, "quantity": product.quantity},
            changes=changes,
        ):
            logger.info("stock_restored", product_id=product_id, quantity=quantity, total=changes["quantity"])
            return True

    logger.error("stock_restore_failed", product_id=product_id, quantity=quantity)
    return False
