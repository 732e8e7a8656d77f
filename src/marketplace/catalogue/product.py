"""Product — the sellable item a checkout reserves stock from.

Listing management belongs to the catalogue UI; the pipeline only reads
availability and adjusts ``quantity``/``status`` through guarded writes.
"""

from enum import Enum

from protean.fields import DateTime, Float, Identifier, Integer, String

from marketplace.domain import marketplace
from marketplace.shared.clock import utc_now


class ProductStatus(Enum):
    ACTIVE = "active"
    SOLD_OUT = "sold_out"
    INACTIVE = "inactive"


@marketplace.aggregate
class Product:
    seller_entity_id = Identifier(required=True)
    title = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="usd")
    quantity = Integer(default=0, min_value=0)
    status = String(choices=ProductStatus, default=ProductStatus.ACTIVE.value)
    created_at = DateTime(default=utc_now)

    def is_available(self, quantity: int = 1) -> bool:
        return self.status == ProductStatus.ACTIVE.value and (self.quantity or 0) >= quantity
