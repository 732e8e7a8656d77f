"""SellerAccount — the seller entity and its payment connected account.

``stripe_connected`` answers "can this seller be charged right now" and is
written by exactly one authority, ``seller.connection``.
"""

from protean.fields import Boolean, DateTime, Identifier, String

from marketplace.domain import marketplace
from marketplace.shared.clock import utc_now


@marketplace.aggregate
class SellerAccount:
    user_id = Identifier(required=True)
    business_name = String(required=True, max_length=255)
    stripe_account_id = String(max_length=255)
    stripe_connected = Boolean(default=False)
    stripe_connected_at = DateTime()
    created_at = DateTime(default=utc_now)

    @property
    def is_chargeable(self) -> bool:
        return bool(self.stripe_account_id) and bool(self.stripe_connected)

    def is_owned_by(self, user_id: str) -> bool:
        return str(self.user_id) == str(user_id)
