"""In-memory collaborators that record calls for development and tests."""

from uuid import uuid4

from orderflow.collaborators.port import CartService, Notifier


class FakeCartService(CartService):
    def __init__(self):
        self.cleared: list[dict] = []
        self.should_succeed = True

    def configure(self, should_succeed: bool = True):
        self.should_succeed = should_succeed

    def clear(self, customer_id: str, order_id: str) -> None:
        if not self.should_succeed:
            raise ConnectionError("Cart service unavailable")
        self.cleared.append({"customer_id": customer_id, "order_id": order_id})


class FakeNotifier(Notifier):
    """Notifier that records messages in memory for test assertions."""

    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Notification delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Notification delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(self, customer_id: str, template: str, context: dict) -> dict:
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"note-{uuid4().hex[:12]}"
        self.sent.append(
            {
                "message_id": message_id,
                "customer_id": customer_id,
                "template": template,
                "context": context,
            }
        )
        return {"message_id": message_id, "status": "sent"}
