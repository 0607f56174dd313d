import json
import os
from pathlib import Path

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Selects the configuration overlay before the domain is initialized.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env


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
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)


@pytest.fixture(scope="session")
def orderflow_bed():
    from orderflow.domain import orderflow

    bed = DomainFixture(orderflow)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(orderflow_bed):
    with orderflow_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def run_around_tests(_ctx):
    """Reset storage and swapped-in adapters after every test."""
    yield

    from protean import current_domain

    from orderflow.collaborators import reset_collaborators
    from orderflow.gateway import reset_gateways
    from orderflow.policy import reset_policy

    # Clear all databases
    for _, provider in current_domain.providers.items():
        provider._data_reset()

    # Drain event stores
    current_domain.event_store.store._data_reset()

    reset_gateways()
    reset_policy()
    reset_collaborators()


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------
@pytest.fixture()
def gateway():
    """A fresh FakeGateway registered for the "stripe" provider."""
    from orderflow.gateway import set_gateway
    from orderflow.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    return fake


@pytest.fixture()
def notifier():
    from orderflow.collaborators import set_notifier
    from orderflow.collaborators.fakes import FakeNotifier

    fake = FakeNotifier()
    set_notifier(fake)
    return fake


@pytest.fixture()
def cart_service():
    from orderflow.collaborators import set_cart_service
    from orderflow.collaborators.fakes import FakeCartService

    fake = FakeCartService()
    set_cart_service(fake)
    return fake


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
ADDRESS = {
    "recipient": "Ada Lovelace",
    "street": "123 Main St",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}


@pytest.fixture()
def stock():
    """Register stock: ``stock("item-X", 5)``."""
    from orderflow.inventory.ledger import InventoryLedger

    def _register(product_id, quantity, name=None):
        return InventoryLedger().register(product_id, name=name or f"Product {product_id}", quantity=quantity)

    return _register


@pytest.fixture()
def available():
    """Current available quantity of a product."""
    from orderflow.inventory.ledger import InventoryLedger

    def _available(product_id):
        return InventoryLedger().snapshot(product_id).available

    return _available


@pytest.fixture()
def make_order():
    """Persist a Pending order directly, optionally back-dated with ``now``."""
    from protean import current_domain

    from orderflow.order.order import Order

    def _make(customer_id="cust-001", items=None, now=None, payment_reference=None, provider="stripe"):
        items = items or [{"product_id": "item-X", "name": "Item X", "quantity": 2, "unit_price": 1500}]
        subtotal = sum(item["quantity"] * item["unit_price"] for item in items)
        order = Order.create(
            customer_id=customer_id,
            items_data=items,
            shipping_address=ADDRESS,
            pricing={"subtotal": subtotal, "shipping": 500, "tax": 0, "currency": "USD"},
            now=now,
        )
        if payment_reference:
            order.attach_payment_reference(provider, payment_reference, at=now)
        current_domain.repository_for(Order).add(order)
        return str(order.id)

    return _make


@pytest.fixture()
def stripe_event():
    """Build a Stripe-style webhook payload (JSON text)."""

    def _event(event_id, event_type, order_id=None, reference=None, amount=3500, failure=None):
        obj = {
            "object": "payment_intent",
            "id": reference,
            "amount": amount,
            "currency": "usd",
            "metadata": {"order_id": order_id} if order_id else {},
        }
        if event_type.startswith("charge."):
            obj = {"object": "charge", "id": f"ch_{event_id}", "payment_intent": reference, "amount": amount}
            obj["metadata"] = {"order_id": order_id} if order_id else {}
        if failure:
            obj["last_payment_error"] = {"message": failure}
        return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})

    return _event
