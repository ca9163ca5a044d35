from contextlib import asynccontextmanager

from mint_engine.core.config import get_settings
from mint_engine.core.logging import configure_logging
from mint_engine.core.middleware import RequestIdMiddleware
from mint_engine.api.v1.router import v1_router
from mint_engine.db.session import SessionLocal
from mint_engine.services.expiry_sweeper import start_background_sweeper
from mint_engine.services.fulfillment_service import FulfillmentService
from mint_engine.services.ledger_client import get_ledger_client

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed.",
                "details": {"errors": errors},
            }
        },
    )


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = None
        if settings.sweeper_enabled:
            stop = start_background_sweeper(
                SessionLocal,
                settings.sweep_interval_seconds,
                fulfillment=FulfillmentService(settings, ledger=get_ledger_client()),
            )
        try:
            yield
        finally:
            if stop is not None:
                stop.set()

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
    )
    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
