"""Payment provider registry.

Provides get_gateway() / set_gateway() to swap implementations per provider:
- FakeGateway ("stripe") by default, for development and testing
- StripeGateway / PayPalGateway when webhook secrets are configured
"""

import os

from orderflow.errors import UnknownProvider
from orderflow.gateway.fake_adapter import FakeGateway
from orderflow.gateway.paypal_adapter import PayPalGateway
from orderflow.gateway.port import PaymentGateway
from orderflow.gateway.stripe_adapter import StripeGateway

_gateways: dict[str, PaymentGateway] = {}


def get_gateway(provider: str = "stripe") -> PaymentGateway:
    """Return the adapter for ``provider``. Stripe defaults to FakeGateway."""
    if provider not in _gateways:
        if provider != "stripe":
            raise UnknownProvider(provider)
        _gateways[provider] = FakeGateway()
    return _gateways[provider]


def set_gateway(gateway: PaymentGateway, provider: str | None = None) -> None:
    """Override the adapter for a provider (useful for tests)."""
    _gateways[provider or gateway.name] = gateway


def reset_gateways() -> None:
    """Reset to default adapters."""
    _gateways.clear()


def configure_gateways_from_env() -> None:
    """Register real adapters for every provider whose webhook secret is set."""
    stripe_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if stripe_secret:
        set_gateway(StripeGateway(api_key=os.getenv("STRIPE_API_KEY"), webhook_secret=stripe_secret))

    paypal_secret = os.getenv("PAYPAL_WEBHOOK_SECRET")
    if paypal_secret:
        set_gateway(PayPalGateway(client_id=os.getenv("PAYPAL_CLIENT_ID"), webhook_secret=paypal_secret))
