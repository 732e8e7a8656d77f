"""Application tests for seller-initiated refunds."""

import pytest
from marketplace.batch.batch import Batch, BatchStatus
from marketplace.catalogue.product import Product
from marketplace.gateway import set_gateway
from marketplace.gateway.fake_adapter import FakeGateway
from marketplace.notification.notification import Notification
from marketplace.order.lifecycle import RecordOrderRefund
from marketplace.order.order import Order, OrderStatus
from marketplace.payment.refund import refund_order
from marketplace.payment.webhook import reconcile_event
from marketplace.seller.seller import SellerAccount
from marketplace.shared.errors import (
    Forbidden,
    OrderNotFound,
    OrderNotRefundable,
    RefundFailed,
    SellerStripeNotConnected,
)
from marketplace.shared.transitions import conditional_update
from protean import current_domain

SELLER_USER = "user-seller-001"


def _get(cls, identifier):
    return current_domain.repository_for(cls).get(identifier)


class TestRefundOrder:
    def test_refunds_paid_order(self, paid_order, product, gateway):
        outcome = refund_order(paid_order, SELLER_USER, reason="Item damaged")

        order = _get(Order, paid_order)
        assert outcome.status == OrderStatus.REFUNDED.value
        assert outcome.refund_id.startswith("re_fake_")
        assert outcome.already_refunded is False
        assert order.status == OrderStatus.REFUNDED.value
        assert order.stripe_refund_id == outcome.refund_id
        assert order.refunded_at is not None

        [call] = gateway.calls_to("create_refund")
        assert call["authorization_id"] == order.payment_intent_id
        assert call["connected_account"] == "acct_seller001"
        assert call["idempotency_key"] == f"refund_order_{paid_order}"

    def test_restores_stock(self, paid_order, product):
        assert _get(Product, product.id).quantity == 2
        refund_order(paid_order, SELLER_USER)
        assert _get(Product, product.id).quantity == 3

    def test_notifies_buyer(self, paid_order):
        refund_order(paid_order, SELLER_USER)

        events = [
            n.event
            for n in current_domain.repository_for(Notification)._dao.query.filter(order_id=paid_order).all().items
        ]
        assert sorted(events) == ["payment_confirmed", "refund_initiated"]

    def test_repeat_request_returns_recorded_refund(self, paid_order, gateway):
        first = refund_order(paid_order, SELLER_USER)
        second = refund_order(paid_order, SELLER_USER)

        assert second.refund_id == first.refund_id
        assert second.already_refunded is True
        assert len(gateway.calls_to("create_refund")) == 1

    def test_single_order_batch_is_auto_completed(self, paid_order):
        outcome = refund_order(paid_order, SELLER_USER)

        assert outcome.batch_auto_completed is True
        batch = _get(Batch, _get(Order, paid_order).batch_id)
        assert batch.status == BatchStatus.COMPLETED.value

    def test_batch_with_open_orders_stays_open(self, paid_order, product, checkout, payment_succeeded):
        _, handle = checkout(product)
        reconcile_event(payment_succeeded(handle))

        outcome = refund_order(paid_order, SELLER_USER)

        assert outcome.batch_auto_completed is False
        batch = _get(Batch, _get(Order, paid_order).batch_id)
        assert batch.status == BatchStatus.PENDING.value


class TestRefundRejections:
    def test_unknown_order(self):
        with pytest.raises(OrderNotFound):
            refund_order("missing", SELLER_USER)

    def test_other_user_is_forbidden(self, paid_order, gateway):
        with pytest.raises(Forbidden):
            refund_order(paid_order, "user-buyer-001")
        assert gateway.calls_to("create_refund") == []

    def test_pending_order_is_not_refundable(self, product, checkout):
        _, handle = checkout(product)
        with pytest.raises(OrderNotRefundable):
            refund_order(handle.order_id, SELLER_USER)

    def test_processor_failure_leaves_order_paid(self, paid_order, gateway):
        gateway.configure(should_succeed=False, failure_reason="Insufficient balance", methods=["create_refund"])

        with pytest.raises(RefundFailed):
            refund_order(paid_order, SELLER_USER)

        order = _get(Order, paid_order)
        assert order.status == OrderStatus.PAID.value
        assert order.stripe_refund_id is None

    def test_retry_after_processor_failure_succeeds(self, paid_order, gateway):
        gateway.configure(should_succeed=False, methods=["create_refund"])
        with pytest.raises(RefundFailed):
            refund_order(paid_order, SELLER_USER)

        gateway.configure(should_succeed=True)
        assert refund_order(paid_order, SELLER_USER).status == OrderStatus.REFUNDED.value


class TestConnectedAccountLookup:
    def test_falls_back_to_seller_user_account(self, paid_order, seller, make_seller, gateway):
        conditional_update(SellerAccount, seller.id, {}, {"stripe_account_id": None})
        make_seller(stripe_account_id="acct_legacy", business_name="Vintage Vault (old)")

        refund_order(paid_order, SELLER_USER)

        assert gateway.calls_to("create_refund")[0]["connected_account"] == "acct_legacy"

    def test_no_connected_account(self, paid_order, seller):
        conditional_update(SellerAccount, seller.id, {}, {"stripe_account_id": None})

        with pytest.raises(SellerStripeNotConnected):
            refund_order(paid_order, SELLER_USER)


class TestConcurrentRefund:
    def test_losing_writer_reports_the_recorded_refund(self, paid_order):
        class RacingGateway(FakeGateway):
            """Another request records its refund while this one talks to the processor."""

            def create_refund(self, authorization_id, connected_account, idempotency_key, reason=None):
                result = super().create_refund(authorization_id, connected_account, idempotency_key, reason)
                current_domain.process(
                    RecordOrderRefund(order_id=paid_order, refund_id="re_recorded_first"),
                    asynchronous=False,
                )
                return result

        set_gateway(RacingGateway())

        outcome = refund_order(paid_order, SELLER_USER)

        order = _get(Order, paid_order)
        assert outcome.refund_id == "re_recorded_first"
        assert outcome.already_refunded is True
        assert outcome.status == OrderStatus.REFUNDED.value
        assert order.stripe_refund_id == "re_recorded_first"

    def test_stock_is_restored_once(self, paid_order, product):
        current_domain.process(RecordOrderRefund(order_id=paid_order, refund_id="re_1"), asynchronous=False)
        recorded_again = current_domain.process(
            RecordOrderRefund(order_id=paid_order, refund_id="re_2"),
            asynchronous=False,
        )

        assert recorded_again is False
        assert _get(Order, paid_order).stripe_refund_id == "re_1"
        assert _get(Product, product.id).quantity == 3
