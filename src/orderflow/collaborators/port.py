"""Post-commit collaborator ports: cart clearing and customer notifications."""

from abc import ABC, abstractmethod


class CartService(ABC):
    """The cart system that owns the customer's basket."""

    @abstractmethod
    def clear(self, customer_id: str, order_id: str) -> None:
        """Empty the customer's cart once their order is paid."""
        ...


class Notifier(ABC):
    """Customer notification dispatch (email, SMS, push)."""

    @abstractmethod
    def send(self, customer_id: str, template: str, context: dict) -> dict:
        """Send a notification.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...
