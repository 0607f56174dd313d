"""Pydantic request/response schemas for the orderflow API.

These are external contracts, kept separate from the internal Protean commands.
Money amounts are integers in minor currency units (cents).
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    recipient: str | None = None
    street: str
    city: str
    state: str | None = None
    postal_code: str
    country: str


class LineItemSchema(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(ge=1)
    unit_price: int = Field(ge=0)


class TotalsSchema(BaseModel):
    subtotal: int = Field(ge=0)
    shipping: int = Field(ge=0, default=0)
    tax: int = Field(ge=0, default=0)
    total: int | None = Field(ge=0, default=None)
    currency: str = Field(default="USD", max_length=3)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    user_id: str
    line_items: list[LineItemSchema] = Field(min_length=1)
    shipping_address: AddressSchema
    totals: TotalsSchema
    checkout_key: str | None = None
    provider: str = "stripe"

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "cust-001",
                    "line_items": [{"product_id": "prod-001", "name": "Desk Lamp", "quantity": 2, "unit_price": 2500}],
                    "shipping_address": {
                        "street": "123 Main St",
                        "city": "Springfield",
                        "state": "IL",
                        "postal_code": "62701",
                        "country": "US",
                    },
                    "totals": {"subtotal": 5000, "shipping": 500, "tax": 400, "currency": "USD"},
                    "checkout_key": "chk-7f3a",
                }
            ]
        }
    }


class CheckoutResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    total: int
    currency: str
    payment_provider: str | None = None
    payment_reference: str | None = None
    client_secret: str | None = None
    created: bool = True


class CancelOrderRequest(BaseModel):
    user_id: str
    reason: str | None = None


class RetryPaymentRequest(BaseModel):
    user_id: str
    provider: str | None = None


# ---------------------------------------------------------------------------
# Staff operations
# ---------------------------------------------------------------------------
class TransitionRequest(BaseModel):
    target_status: str
    actor_id: str
    actor_role: str
    reason: str | None = None


class AttachTrackingRequest(BaseModel):
    tracking_number: str = Field(min_length=1)
    carrier: str | None = None


class ConfirmDeliveryRequest(BaseModel):
    actor_id: str
    actor_role: str = "customer"


class ApprovalDecisionRequest(BaseModel):
    actor_id: str
    actor_role: str
    approved: bool
    comments: str | None = None


class RegisterStockRequest(BaseModel):
    product_id: str
    name: str | None = None
    quantity: int = Field(ge=0, default=0)


class ReceiveStockRequest(BaseModel):
    quantity: int = Field(ge=1)
    reference: str | None = None


class AdjustStockRequest(BaseModel):
    quantity_change: int
    reason: str = Field(min_length=1)
    adjustment_type: str = "Correction"
    adjusted_by: str | None = None


class RunJobsRequest(BaseModel):
    as_of: datetime | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class TransitionResponse(BaseModel):
    order_id: str
    outcome: str
    from_status: str
    to_status: str
    approval_id: str | None = None
    side_effects: list[str] = []


class StatusChangeSchema(BaseModel):
    sequence: int
    status: str
    changed_at: datetime
    reason: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None


class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price: int
    line_total: int


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    customer_id: str
    status: str
    items: list[OrderItemResponse]
    subtotal: int
    shipping: int
    tax: int
    total: int
    currency: str
    payment_provider: str | None = None
    payment_reference: str | None = None
    tracking_number: str | None = None
    carrier: str | None = None
    needs_attention: bool = False
    attention_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class OrderHistoryResponse(BaseModel):
    order_id: str
    status: str
    history: list[StatusChangeSchema]


class TrackingResponse(BaseModel):
    order_number: str
    status: str
    tracking_number: str | None = None
    carrier: str | None = None
    tracking_url: str | None = None
    history: list[StatusChangeSchema]


class TransitionOptionSchema(BaseModel):
    target_status: str
    description: str
    requires_approval: bool
    approval_roles: list[str]
    side_effects: list[str]


class TransitionOptionsResponse(BaseModel):
    order_id: str
    status: str
    transitions: list[TransitionOptionSchema]


class ApprovalResponse(BaseModel):
    approval_id: str
    order_id: str
    from_status: str
    to_status: str
    requested_by: str | None = None
    requested_role: str | None = None
    reason: str | None = None
    required_roles: list[str]
    status: str
    requested_at: datetime
    expires_at: datetime


class ApprovalDecisionResponse(BaseModel):
    approval_id: str
    status: str
    transition: TransitionResponse | None = None


class ProcessingResultResponse(BaseModel):
    event_key: str
    outcome: str
    duplicate: bool = False
    order_id: str | None = None
    order_status: str | None = None
    detail: str | None = None


class StockResponse(BaseModel):
    product_id: str
    name: str | None = None
    available: int
    reserved: int
    shipped: int


class StatusResponse(BaseModel):
    status: str = "ok"
