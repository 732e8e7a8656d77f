"""Seller lookups shared by the refund and notification paths.

Orders carry both the seller entity id and the owning user id. Older rows
link the connected account through the user only, so lookups try the
entity first and fall back to the user.
"""

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.seller.seller import SellerAccount

logger = structlog.get_logger(__name__)


def get_seller(seller_entity_id: str | None) -> SellerAccount | None:
    if not seller_entity_id:
        return None
    try:
        return current_domain.repository_for(SellerAccount).get(seller_entity_id)
    except ObjectNotFoundError:
        return None


def find_seller_by_user(user_id: str | None, with_account: bool = False) -> SellerAccount | None:
    if not user_id:
        return None
    sellers = current_domain.repository_for(SellerAccount)._dao.query.filter(user_id=user_id).all().items
    if with_account:
        sellers = [seller for seller in sellers if seller.stripe_account_id]
    return sellers[0] if sellers else None


def find_seller_by_stripe_account(stripe_account_id: str) -> SellerAccount | None:
    dao = current_domain.repository_for(SellerAccount)._dao
    sellers = dao.query.filter(stripe_account_id=stripe_account_id).all().items
    return sellers[0] if sellers else None


def resolve_connected_account(seller_entity_id: str | None, seller_user_id: str | None) -> str | None:
    """Return the seller's connected account id, entity-linked first."""
    seller = get_seller(seller_entity_id)
    if seller is not None and seller.stripe_account_id:
        return seller.stripe_account_id

    legacy = find_seller_by_user(seller_user_id, with_account=True)
    if legacy is not None and legacy.stripe_account_id:
        logger.warning(
            "seller_account_resolved_by_user",
            seller_entity_id=seller_entity_id,
            seller_user_id=seller_user_id,
        )
        return legacy.stripe_account_id

    return None


def seller_display_name(seller_entity_id: str | None, seller_user_id: str | None) -> str:
    seller = get_seller(seller_entity_id) or find_seller_by_user(seller_user_id)
    return seller.business_name if seller is not None else "the seller"
