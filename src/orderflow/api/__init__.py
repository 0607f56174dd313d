from orderflow.api.errors import register_error_handlers
from orderflow.api.routes import (
    approval_router,
    checkout_router,
    job_router,
    order_router,
    stock_router,
    webhook_router,
)

__all__ = [
    "approval_router",
    "checkout_router",
    "job_router",
    "order_router",
    "register_error_handlers",
    "stock_router",
    "webhook_router",
]
