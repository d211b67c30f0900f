import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from .config import get_cors_origins, configure_logging
from .db import create_db_and_tables
from .services.exceptions import SupplyError

from .routers.materials import router as materials_router
from .routers.purchase import router as purchase_router
from .routers.stock import router as stock_router
from .routers.invoices import router as invoices_router
from .routers.notifications import router as notifications_router

logger = logging.getLogger(__name__)


def _error_body(message: str, code: str, retryable: bool) -> dict:
    return {"success": False, "message": message, "code": code, "retryable": retryable}


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Site Supply Chain API",
        description="Material requests, dispatch, GRN, stock ledger and purchase invoices for construction sites",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(materials_router)
    app.include_router(purchase_router)
    app.include_router(stock_router)
    app.include_router(invoices_router)
    app.include_router(notifications_router)

    @app.exception_handler(SupplyError)
    async def supply_error_handler(request: Request, exc: SupplyError):
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, exc.code, exc.retryable)
        )

    @app.exception_handler(OperationalError)
    async def database_error_handler(request: Request, exc: OperationalError):
        logger.error("Database unavailable during %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=503,
            content=_error_body("Database temporarily unavailable, please retry", "DATABASE_UNAVAILABLE", True)
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error during %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=_error_body("Internal server error", "INTERNAL_ERROR", False)
        )

    @app.on_event("startup")
    def on_startup():
        logger.info("Creating database tables at startup...")
        create_db_and_tables()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
