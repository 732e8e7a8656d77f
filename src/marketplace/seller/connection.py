"""Seller connection authority — single writer of ``stripe_connected``.

A seller is chargeable when the processor reports both charges and payouts
enabled on the connected account. The onboarding return callback and the
``account.updated`` webhook both write through ``SyncSellerConnection``;
``capability.updated`` re-reads the account before syncing, and
deauthorization syncs with both capabilities off.
"""

import structlog
from protean import handle
from protean.fields import Boolean, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.gateway import get_gateway
from marketplace.seller.lookup import find_seller_by_stripe_account
from marketplace.seller.seller import SellerAccount
from marketplace.shared.clock import utc_now
from marketplace.shared.transitions import conditional_update

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="SellerAccount")
class SyncSellerConnection:
    stripe_account_id = String(required=True, max_length=255)
    charges_enabled = Boolean(default=False)
    payouts_enabled = Boolean(default=False)
    source = String(max_length=50)


@marketplace.command_handler(part_of=SellerAccount)
class SellerConnectionHandler:
    @handle(SyncSellerConnection)
    def sync_connection(self, command):
        """Returns the seller's resulting connection flag, or None for unknown accounts."""
        seller = find_seller_by_stripe_account(command.stripe_account_id)
        if seller is None:
            logger.warning(
                "seller_connection_unknown_account",
                stripe_account_id=command.stripe_account_id,
                source=command.source,
            )
            return None

        connected = bool(command.charges_enabled and command.payouts_enabled)
        changed = conditional_update(
            SellerAccount,
            seller.id,
            guard={"stripe_connected": not connected},
            changes={
                "stripe_connected": connected,
                "stripe_connected_at": utc_now() if connected else None,
            },
        )
        if changed:
            logger.info(
                "seller_connection_changed",
                seller_id=seller.id,
                stripe_account_id=command.stripe_account_id,
                connected=connected,
                source=command.source,
            )
        return connected


def sync_from_capabilities(stripe_account_id: str, charges_enabled: bool, payouts_enabled: bool, source: str):
    return current_domain.process(
        SyncSellerConnection(
            stripe_account_id=stripe_account_id,
            charges_enabled=charges_enabled,
            payouts_enabled=payouts_enabled,
            source=source,
        ),
        asynchronous=False,
    )


def refresh_seller_connection(stripe_account_id: str, source: str):
    """Pull the account's capabilities from the processor and sync them."""
    capabilities = get_gateway().retrieve_account(stripe_account_id)
    return sync_from_capabilities(
        stripe_account_id,
        charges_enabled=capabilities.charges_enabled,
        payouts_enabled=capabilities.payouts_enabled,
        source=source,
    )


def disconnect_seller(stripe_account_id: str):
    return sync_from_capabilities(stripe_account_id, False, False, source="account.application.deauthorized")
