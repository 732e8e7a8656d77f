"""Marketplace bounded context — checkout-to-settlement pipeline.

Covers checkout intents, inventory reservation, payment authorization on the
seller's connected account, webhook reconciliation, order and batch
lifecycles, and seller-initiated refunds.
"""

import logging

import structlog
from protean.domain import Domain

marketplace = Domain(name="marketplace")

logging.getLogger("protean").setLevel(logging.WARNING)

logger = structlog.get_logger(__name__)
