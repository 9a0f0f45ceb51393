import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ticket_booking.domain.exceptions import BookingEngineError

logger = logging.getLogger(__name__)


async def booking_engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    if exc.retryable:
        logger.warning("Retryable failure path=%s code=%s", request.url.path, exc.code)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingEngineError, booking_engine_error_handler)
