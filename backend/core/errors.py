"""
Typed errors raised by the stock services.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with. Callers branch on the class, never on the message.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StockError(Exception):
    code = "STOCK_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFoundError(StockError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InvalidRequestError(StockError):
    code = "INVALID_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidAdjustmentError(StockError):
    code = "INVALID_ADJUSTMENT"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTransferError(StockError):
    code = "INVALID_TRANSFER"
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientStockError(StockError):
    code = "INSUFFICIENT_STOCK"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, *, product_id: int, requested: int, available: int,
                 location_id: Optional[int] = None):
        super().__init__(
            message,
            product_id=product_id,
            location_id=location_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available


class InsufficientAvailableStockError(InsufficientStockError):
    code = "INSUFFICIENT_AVAILABLE_STOCK"


class OverUnreserveError(StockError):
    code = "OVER_UNRESERVE"
    status_code = status.HTTP_409_CONFLICT


class OverReceiptError(StockError):
    code = "OVER_RECEIPT"
    status_code = status.HTTP_409_CONFLICT


class InvalidStatusTransitionError(StockError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"Invalid {entity} status transition from {current} to {requested}",
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class InvalidStateError(StockError):
    code = "INVALID_STATE"
    status_code = status.HTTP_409_CONFLICT


class TransientConflictError(StockError):
    """The datastore kept rejecting the unit of work (lock timeout, deadlock, serialization)."""

    code = "TRANSIENT_CONFLICT"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def setup_exception_handlers(app: FastAPI):

    @app.exception_handler(StockError)
    async def stock_error_handler(request: Request, exc: StockError):
        return JSONResponse(content=exc.to_dict(), status_code=exc.status_code)

    # Catch all unhandled exceptions
    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
