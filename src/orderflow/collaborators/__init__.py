"""Collaborator registry.

Fake, in-memory collaborators are used by default. Deployments that talk to
a real cart service or notification gateway install their adapters with
``set_cart_service()`` / ``set_notifier()`` at startup.
"""

from orderflow.collaborators.fakes import FakeCartService, FakeNotifier
from orderflow.collaborators.port import CartService, Notifier

_cart_service: CartService | None = None
_notifier: Notifier | None = None


def get_cart_service() -> CartService:
    global _cart_service
    if _cart_service is None:
        _cart_service = FakeCartService()
    return _cart_service


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = FakeNotifier()
    return _notifier


def set_cart_service(service: CartService) -> None:
    global _cart_service
    _cart_service = service


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


def reset_collaborators() -> None:
    """Reset to default collaborators (useful for testing)."""
    global _cart_service, _notifier
    _cart_service = None
    _notifier = None
