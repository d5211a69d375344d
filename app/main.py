from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from app.database.database import create_all_tables

from app.common.exceptions import InternalError, SettlementError

# Import routers
from app.modules.negotiation_invoices.router import router as negotiation_invoices_router
from app.modules.payment_invoices.router import router as payment_invoices_router
from app.modules.redemptions.router import router as redemptions_router

# Import models for table creation
import app.modules.shops.models
import app.modules.giftcards.models
import app.modules.redemptions.models
import app.modules.purchases.models
import app.modules.negotiation_invoices.models
import app.modules.payment_invoices.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.is_production else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Voucher Settlement API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    # Create database tables (only for development - use migrations in production)
    if settings.ENVIRONMENT == "development":
        await create_all_tables()
    yield
    logger.info("Voucher Settlement API shutting down...")


# FastAPI app
app = FastAPI(
    title="Voucher Settlement API",
    description="Gift card redemptions, payout invoices and fee invoices for partner studios",
    version="1.0.0",
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    lifespan=lifespan
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(error: SettlementError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"message": error.message, "code": error.code, "error": type(error).__name__}
    )


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return _error_response(exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(InternalError())


# Include routers
app.include_router(redemptions_router)
app.include_router(negotiation_invoices_router)
app.include_router(payment_invoices_router)


@app.get("/")
async def read_root():
    return {
        "message": "Voucher Settlement API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
