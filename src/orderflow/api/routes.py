"""FastAPI routes for orderflow: checkout, orders, approvals, webhooks, stock and jobs."""

from fastapi import APIRouter, Header, HTTPException, Request
from protean.utils.globals import current_domain

from orderflow.api.schemas import (
    AdjustStockRequest,
    ApprovalDecisionRequest,
    ApprovalDecisionResponse,
    ApprovalResponse,
    AttachTrackingRequest,
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    ConfirmDeliveryRequest,
    OrderHistoryResponse,
    OrderItemResponse,
    OrderResponse,
    ProcessingResultResponse,
    ReceiveStockRequest,
    RegisterStockRequest,
    RetryPaymentRequest,
    RunJobsRequest,
    StatusChangeSchema,
    StatusResponse,
    StockResponse,
    TrackingResponse,
    TransitionOptionSchema,
    TransitionOptionsResponse,
    TransitionRequest,
    TransitionResponse,
)
from orderflow.approval.approval import ApprovalStatus, PendingApproval
from orderflow.approval.decisions import decide_approval
from orderflow.checkout.checkout import CheckoutOrchestrator
from orderflow.errors import UnknownProduct
from orderflow.inventory.ledger import InventoryLedger
from orderflow.inventory.management import AdjustStock, ReceiveStock, RegisterStock
from orderflow.order.guard import requirements, valid_targets
from orderflow.order.lifecycle import OrderLifecycleEngine
from orderflow.order.order import Order
from orderflow.order.transitions import AttachTracking, ClearAttention, ConfirmDelivery, RequestTransition
from orderflow.payment.monitoring import event_summary, failed_events, webhook_health
from orderflow.payment.reconciler import PaymentEventReconciler
from orderflow.projections.order_timeline import timeline_for
from orderflow.scheduling.worker import JobWorker

TRACKING_URL = "https://tracking.example.com/{tracking_number}"


def _history(order: Order) -> list[StatusChangeSchema]:
    return [
        StatusChangeSchema(
            sequence=entry.sequence,
            status=entry.status,
            changed_at=entry.changed_at,
            reason=entry.reason,
            actor_id=entry.actor_id,
            actor_role=entry.actor_role,
        )
        for entry in order.history()
    ]


def _order_response(order: Order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_id=str(order.customer_id),
        status=order.status,
        items=[
            OrderItemResponse(
                product_id=str(item.product_id),
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for item in order.items
        ],
        subtotal=order.pricing.subtotal,
        shipping=order.pricing.shipping or 0,
        tax=order.pricing.tax or 0,
        total=order.pricing.total,
        currency=order.pricing.currency,
        payment_provider=order.payment_provider,
        payment_reference=order.payment_reference,
        tracking_number=order.tracking_number,
        carrier=order.carrier,
        needs_attention=bool(order.needs_attention),
        attention_reason=order.attention_reason,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def _approval_response(approval: PendingApproval) -> ApprovalResponse:
    return ApprovalResponse(
        approval_id=str(approval.id),
        order_id=str(approval.order_id),
        from_status=approval.from_status,
        to_status=approval.to_status,
        requested_by=approval.requested_by,
        requested_role=approval.requested_role,
        reason=approval.reason,
        required_roles=approval.roles,
        status=approval.status,
        requested_at=approval.requested_at,
        expires_at=approval.expires_at,
    )


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=CheckoutResponse)
async def checkout(body: CheckoutRequest) -> CheckoutResponse:
    """Place a Pending order and request payment from the provider."""
    result = CheckoutOrchestrator().create_order(
        user_id=body.user_id,
        line_items=[item.model_dump() for item in body.line_items],
        shipping_address=body.shipping_address.model_dump(),
        totals=body.totals.model_dump(),
        checkout_key=body.checkout_key,
        provider=body.provider,
    )
    return CheckoutResponse(**result)


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/attention", response_model=list[OrderResponse])
async def orders_requiring_attention() -> list[OrderResponse]:
    """Orders flagged for review or stuck in a status for too long."""
    orders = current_domain.repository_for(Order).requiring_attention()
    return [_order_response(order) for order in orders]


@order_router.get("/track/{order_number}", response_model=TrackingResponse)
async def track_order(order_number: str) -> TrackingResponse:
    order = current_domain.repository_for(Order).find_by_number(order_number)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_number} not found")

    tracking_url = TRACKING_URL.format(tracking_number=order.tracking_number) if order.tracking_number else None
    return TrackingResponse(
        order_number=order.order_number,
        status=order.status,
        tracking_number=order.tracking_number,
        carrier=order.carrier,
        tracking_url=tracking_url,
        history=_history(order),
    )


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(OrderLifecycleEngine().load(order_id))


@order_router.get("/{order_id}/history", response_model=OrderHistoryResponse)
async def get_order_history(order_id: str) -> OrderHistoryResponse:
    order = OrderLifecycleEngine().load(order_id)
    return OrderHistoryResponse(order_id=str(order.id), status=order.status, history=_history(order))


@order_router.get("/{order_id}/timeline")
async def get_order_timeline(order_id: str) -> list[dict]:
    """Audit trail of everything that happened to the order."""
    OrderLifecycleEngine().load(order_id)
    return [
        {
            "event_type": entry.event_type,
            "description": entry.description,
            "occurred_at": entry.occurred_at.isoformat(),
        }
        for entry in timeline_for(order_id)
    ]


@order_router.get("/{order_id}/transitions", response_model=TransitionOptionsResponse)
async def get_transition_options(order_id: str) -> TransitionOptionsResponse:
    """Statuses the order can move to next, and what each move needs."""
    order = OrderLifecycleEngine().load(order_id)
    return TransitionOptionsResponse(
        order_id=str(order.id),
        status=order.status,
        transitions=[
            TransitionOptionSchema(target_status=target.value, **requirements(order.status, target))
            for target in valid_targets(order.status)
        ],
    )


@order_router.post("/{order_id}/transitions", response_model=TransitionResponse)
async def request_transition(order_id: str, body: TransitionRequest) -> TransitionResponse:
    command = RequestTransition(
        order_id=order_id,
        target_status=body.target_status,
        actor_id=body.actor_id,
        actor_role=body.actor_role,
        reason=body.reason,
    )
    result = current_domain.process(command, asynchronous=False)
    return TransitionResponse(**result)


@order_router.post("/{order_id}/cancel", response_model=TransitionResponse)
async def cancel_order(order_id: str, body: CancelOrderRequest) -> TransitionResponse:
    """Customer cancellation of their own Pending order."""
    result = CheckoutOrchestrator().cancel_by_user(order_id, body.user_id, reason=body.reason)
    return TransitionResponse(**result)


@order_router.post("/{order_id}/retry-payment", response_model=CheckoutResponse)
async def retry_payment(order_id: str, body: RetryPaymentRequest) -> CheckoutResponse:
    CheckoutOrchestrator().retry_payment(order_id, body.user_id, provider=body.provider)
    order = OrderLifecycleEngine().load(order_id)
    return CheckoutResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        total=order.pricing.total,
        currency=order.pricing.currency,
        payment_provider=order.payment_provider,
        payment_reference=order.payment_reference,
        created=False,
    )


@order_router.post("/{order_id}/tracking", response_model=StatusResponse)
async def attach_tracking(order_id: str, body: AttachTrackingRequest) -> StatusResponse:
    command = AttachTracking(order_id=order_id, tracking_number=body.tracking_number, carrier=body.carrier)
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@order_router.post("/{order_id}/confirm-delivery", response_model=TransitionResponse)
async def confirm_delivery(order_id: str, body: ConfirmDeliveryRequest) -> TransitionResponse:
    command = ConfirmDelivery(order_id=order_id, actor_id=body.actor_id, actor_role=body.actor_role)
    result = current_domain.process(command, asynchronous=False)
    return TransitionResponse(**result)


@order_router.delete("/{order_id}/attention", response_model=StatusResponse)
async def clear_attention(order_id: str) -> StatusResponse:
    current_domain.process(ClearAttention(order_id=order_id), asynchronous=False)
    return StatusResponse()


# ---------------------------------------------------------------------------
# Approval Router
# ---------------------------------------------------------------------------
approval_router = APIRouter(prefix="/approvals", tags=["approvals"])


@approval_router.get("", response_model=list[ApprovalResponse])
async def list_pending_approvals(role: str | None = None) -> list[ApprovalResponse]:
    repo = current_domain.repository_for(PendingApproval)
    approvals = repo.pending_for_role(role) if role else repo.pending()
    return [_approval_response(approval) for approval in approvals]


@approval_router.post("/{approval_id}/decision", response_model=ApprovalDecisionResponse)
async def decide(approval_id: str, body: ApprovalDecisionRequest) -> ApprovalDecisionResponse:
    outcome = decide_approval(
        approval_id,
        actor_id=body.actor_id,
        actor_role=body.actor_role,
        approved=body.approved,
        comments=body.comments,
    )
    if outcome["status"] == ApprovalStatus.EXPIRED.value:
        raise HTTPException(status_code=400, detail="Approval request has expired")
    return ApprovalDecisionResponse(**outcome)


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.get("/events/failed")
async def list_failed_events() -> list[dict]:
    return failed_events()


@webhook_router.get("/events/summary")
async def get_event_summary() -> dict:
    return event_summary()


@webhook_router.get("/health")
async def get_webhook_health() -> dict:
    return webhook_health()


@webhook_router.post("/events/{event_key}/retry", response_model=ProcessingResultResponse)
async def retry_event(event_key: str) -> ProcessingResultResponse:
    """Manually re-run an event that failed to process."""
    result = PaymentEventReconciler().retry(event_key)
    return ProcessingResultResponse(**result.to_dict())


@webhook_router.post("/{provider}", response_model=ProcessingResultResponse)
async def receive_webhook(
    provider: str,
    request: Request,
    x_webhook_signature: str = Header(default=""),
) -> ProcessingResultResponse:
    """Receive a payment provider notification.

    The raw body is verified as delivered; re-serializing it would break
    the provider's signature.
    """
    try:
        raw_payload = (await request.body()).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="Webhook body is not valid UTF-8") from exc
    result = PaymentEventReconciler().handle_event(provider, raw_payload, x_webhook_signature)
    return ProcessingResultResponse(**result.to_dict())


# ---------------------------------------------------------------------------
# Stock Router
# ---------------------------------------------------------------------------
stock_router = APIRouter(prefix="/stock", tags=["stock"])


def _stock_response(product_id: str) -> StockResponse:
    item = InventoryLedger().snapshot(product_id)
    if item is None:
        raise UnknownProduct(product_id)
    return StockResponse(
        product_id=str(item.product_id),
        name=item.name,
        available=item.available,
        reserved=item.reserved,
        shipped=item.shipped,
    )


@stock_router.post("", status_code=201, response_model=StockResponse)
async def register_stock(body: RegisterStockRequest) -> StockResponse:
    command = RegisterStock(product_id=body.product_id, name=body.name, quantity=body.quantity)
    current_domain.process(command, asynchronous=False)
    return _stock_response(body.product_id)


@stock_router.post("/{product_id}/receive", response_model=StockResponse)
async def receive_stock(product_id: str, body: ReceiveStockRequest) -> StockResponse:
    command = ReceiveStock(product_id=product_id, quantity=body.quantity, reference=body.reference)
    current_domain.process(command, asynchronous=False)
    return _stock_response(product_id)


@stock_router.post("/{product_id}/adjust", response_model=StockResponse)
async def adjust_stock(product_id: str, body: AdjustStockRequest) -> StockResponse:
    command = AdjustStock(
        product_id=product_id,
        quantity_change=body.quantity_change,
        reason=body.reason,
        adjustment_type=body.adjustment_type,
        adjusted_by=body.adjusted_by,
    )
    current_domain.process(command, asynchronous=False)
    return _stock_response(product_id)


@stock_router.get("/out-of-stock", response_model=list[StockResponse])
async def list_out_of_stock() -> list[StockResponse]:
    return [_stock_response(str(item.product_id)) for item in InventoryLedger().out_of_stock()]


@stock_router.get("/{product_id}", response_model=StockResponse)
async def get_stock(product_id: str) -> StockResponse:
    return _stock_response(product_id)


# ---------------------------------------------------------------------------
# Job Router
# ---------------------------------------------------------------------------
job_router = APIRouter(prefix="/jobs", tags=["jobs"])


@job_router.post("/run-due")
async def run_due_jobs(body: RunJobsRequest | None = None) -> dict:
    """Run scheduled jobs that are due (normally triggered by the worker)."""
    return JobWorker().run_due(as_of=body.as_of if body else None)
