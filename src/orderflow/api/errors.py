"""HTTP mapping for orderflow errors.

Protean's own ``ValidationError`` (400) and ``ObjectNotFoundError`` (404)
are handled by ``protean.integrations.fastapi.register_exception_handlers``.
The handlers here cover the errors that need a different status or carry
extra fields.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from orderflow.errors import (
    ConcurrentModification,
    InsufficientStock,
    InvalidSignature,
    InvalidTransition,
    UnknownOrder,
    UnknownProduct,
    UnknownProvider,
)

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc, **fields) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": exc.reason, **fields},
    )


async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
    return _error(400, exc, from_status=exc.from_status, to_status=exc.to_status)


async def _insufficient_stock(request: Request, exc: InsufficientStock) -> JSONResponse:
    return _error(400, exc, product_id=exc.product_id, requested=exc.requested, available=exc.available)


async def _concurrent_modification(request: Request, exc: ConcurrentModification) -> JSONResponse:
    logger.warning("Concurrent modification", path=request.url.path, aggregate=exc.aggregate, identifier=exc.identifier)
    return _error(409, exc)


async def _invalid_signature(request: Request, exc: InvalidSignature) -> JSONResponse:
    return _error(401, exc, provider=exc.provider)


async def _not_found(request: Request, exc) -> JSONResponse:
    return _error(404, exc)


def register_error_handlers(app: FastAPI) -> None:
    """Install Protean's default handlers plus the orderflow-specific ones."""
    register_exception_handlers(app)
    app.add_exception_handler(InvalidTransition, _invalid_transition)
    app.add_exception_handler(InsufficientStock, _insufficient_stock)
    app.add_exception_handler(ConcurrentModification, _concurrent_modification)
    app.add_exception_handler(InvalidSignature, _invalid_signature)
    app.add_exception_handler(UnknownOrder, _not_found)
    app.add_exception_handler(UnknownProduct, _not_found)
    app.add_exception_handler(UnknownProvider, _not_found)
