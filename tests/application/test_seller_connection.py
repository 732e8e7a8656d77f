"""Application tests for the seller connection authority."""

from marketplace.seller.connection import disconnect_seller, refresh_seller_connection, sync_from_capabilities
from marketplace.seller.lookup import resolve_connected_account, seller_display_name
from marketplace.seller.seller import SellerAccount
from protean import current_domain


def _seller(seller_id):
    return current_domain.repository_for(SellerAccount).get(seller_id)


class TestSyncConnection:
    def test_both_capabilities_connect(self, make_seller):
        seller = make_seller(connected=False)
        assert sync_from_capabilities("acct_seller001", True, True, source="test") is True
        assert _seller(seller.id).stripe_connected is True

    def test_charges_alone_do_not_connect(self, make_seller):
        seller = make_seller(connected=False)
        assert sync_from_capabilities("acct_seller001", True, False, source="test") is False
        assert _seller(seller.id).stripe_connected is False

    def test_repeated_sync_is_idempotent(self, seller):
        assert sync_from_capabilities("acct_seller001", True, True, source="test") is True
        assert _seller(seller.id).stripe_connected is True

    def test_unknown_account_returns_none(self):
        assert sync_from_capabilities("acct_unknown", True, True, source="test") is None

    def test_disconnect_clears_connection_time(self, make_seller):
        seller = make_seller(connected=False)
        sync_from_capabilities("acct_seller001", True, True, source="test")

        disconnect_seller("acct_seller001")

        refreshed = _seller(seller.id)
        assert refreshed.stripe_connected is False
        assert refreshed.stripe_connected_at is None


class TestRefreshConnection:
    def test_reads_capabilities_from_gateway(self, make_seller, gateway):
        seller = make_seller(connected=False)
        gateway.set_account("acct_seller001", charges_enabled=True, payouts_enabled=True)

        assert refresh_seller_connection("acct_seller001", source="return_callback") is True
        assert _seller(seller.id).stripe_connected is True

    def test_restricted_account_disconnects(self, seller, gateway):
        gateway.set_account("acct_seller001", charges_enabled=True, payouts_enabled=False)
        assert refresh_seller_connection("acct_seller001", source="return_callback") is False
        assert _seller(seller.id).stripe_connected is False


class TestLookup:
    def test_entity_account_wins(self, seller, make_seller):
        make_seller(stripe_account_id="acct_other")
        assert resolve_connected_account(str(seller.id), "user-seller-001") == "acct_seller001"

    def test_user_fallback(self, make_seller):
        make_seller(stripe_account_id="acct_legacy")
        assert resolve_connected_account("missing", "user-seller-001") == "acct_legacy"

    def test_nothing_found(self):
        assert resolve_connected_account(None, "nobody") is None

    def test_display_name(self, seller):
        assert seller_display_name(str(seller.id), None) == "Vintage Vault"
        assert seller_display_name(None, "nobody") == "the seller"
