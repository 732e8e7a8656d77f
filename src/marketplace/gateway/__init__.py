"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing (the default)
- StripeGateway when ``PAYMENT_GATEWAY=stripe``, configured from
  ``STRIPE_SECRET_KEY`` and ``STRIPE_WEBHOOK_SECRET``
"""

import os

from marketplace.gateway.fake_adapter import FakeGateway
from marketplace.gateway.port import PaymentGateway
from marketplace.gateway.stripe_adapter import StripeGateway

_current_gateway: PaymentGateway | None = None


def gateway_from_env() -> PaymentGateway:
    if os.environ.get("PAYMENT_GATEWAY", "fake").lower() == "stripe":
        return StripeGateway(
            api_key=os.environ["STRIPE_SECRET_KEY"],
            webhook_secret=os.environ["STRIPE_WEBHOOK_SECRET"],
        )
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, building it from the environment on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = gateway_from_env()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
