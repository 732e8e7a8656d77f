import os
from pathlib import Path

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture

BUYER_ID = "user-buyer-001"
SELLER_USER_ID = "user-seller-001"


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the config environment before the domain is imported."""
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ.setdefault("PAYMENT_GATEWAY", "fake")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)


@pytest.fixture(scope="session")
def marketplace_bed():
    from marketplace.domain import marketplace

    bed = DomainFixture(marketplace)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(marketplace_bed):
    with marketplace_bed.domain_context():
        yield

        # Clear all databases
        for _, provider in current_domain.providers.items():
            provider._data_reset()


@pytest.fixture(autouse=True)
def gateway():
    """A fresh FakeGateway per test."""
    from marketplace.gateway import reset_gateway, set_gateway
    from marketplace.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
@pytest.fixture()
def make_seller():
    from marketplace.seller.seller import SellerAccount

    def _make(
        user_id: str = SELLER_USER_ID,
        stripe_account_id: str | None = "acct_seller001",
        connected: bool = True,
        business_name: str = "Vintage Vault",
    ):
        seller = SellerAccount(
            user_id=user_id,
            business_name=business_name,
            stripe_account_id=stripe_account_id,
            stripe_connected=connected,
        )
        current_domain.repository_for(SellerAccount).add(seller)
        return seller

    return _make


@pytest.fixture()
def make_product():
    from marketplace.catalogue.product import Product

    def _make(seller, price: float = 25.0, quantity: int = 3, title: str = "Denim jacket"):
        product = Product(seller_entity_id=seller.id, title=title, price=price, quantity=quantity)
        current_domain.repository_for(Product).add(product)
        return product

    return _make


@pytest.fixture()
def seller(make_seller):
    return make_seller()


@pytest.fixture()
def product(make_product, seller):
    return make_product(seller)


@pytest.fixture()
def create_intent():
    from marketplace.checkout.creation import CreateCheckoutIntent

    def _create(product, buyer_id: str = BUYER_ID, quantity: int = 1, show_id: str | None = "show-001", as_of=None):
        return current_domain.process(
            CreateCheckoutIntent(
                buyer_id=buyer_id,
                seller_id=str(product.seller_entity_id),
                product_id=str(product.id),
                show_id=show_id,
                quantity=quantity,
                as_of=as_of,
            ),
            asynchronous=False,
        )

    return _create


@pytest.fixture()
def checkout(create_intent):
    """Create and authorize an intent; returns (intent_id, authorization handle)."""
    from marketplace.payment.authorization import authorize_checkout

    def _checkout(product, buyer_id: str = BUYER_ID, quantity: int = 1, show_id: str | None = "show-001"):
        intent_id = create_intent(product, buyer_id=buyer_id, quantity=quantity, show_id=show_id)
        return intent_id, authorize_checkout(intent_id, buyer_id)

    return _checkout


@pytest.fixture()
def stripe_event():
    """Build a processor event payload as delivered to the webhook."""
    counter = {"n": 0}

    def _event(event_type: str, obj: dict, event_id: str | None = None, account: str | None = None) -> dict:
        counter["n"] += 1
        event = {
            "id": event_id or f"evt_test_{counter['n']:04d}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
        if account:
            event["account"] = account
        return event

    return _event


@pytest.fixture()
def payment_succeeded(stripe_event):
    def _event(handle, event_id: str | None = None) -> dict:
        return stripe_event(
            "payment_intent.succeeded",
            {
                "id": handle.authorization_id,
                "object": "payment_intent",
                "status": "succeeded",
                "metadata": {"order_id": handle.order_id},
            },
            event_id=event_id,
        )

    return _event


@pytest.fixture()
def paid_order(checkout, product, payment_succeeded):
    """An order that went through checkout and a successful payment webhook."""
    from marketplace.payment.webhook import reconcile_event

    _, handle = checkout(product)
    reconcile_event(payment_succeeded(handle))
    return handle.order_id

