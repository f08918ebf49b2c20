from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
import time
import uuid

from .config import settings
from .database import create_tables
from .exceptions import InventoryEngineError
from .utils.logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from .utils.rate_limiter import limiter

from .routers import bookings, availability, health

logger = get_logger("rental_engine.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(
        level=settings.log_level,
        json_format=settings.log_json or settings.is_production,
    )
    logger.info(f"Starting rental engine ({settings.environment})")
    logger.info(f"CORS origins: {settings.cors_origins}")

    create_tables()

    yield

    logger.info("Shutting down rental engine")


app = FastAPI(
    title="Rental Inventory Reservation Engine",
    description="Availability, atomic multi-item bookings and order numbering for rental equipment",
    version=health.VERSION,
    lifespan=lifespan
)

# Rate limiter state
app.state.limiter = limiter


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# Request ID Middleware
class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        started = time.time()
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        logger.api_request(
            request.method,
            request.url.path,
            response.status_code,
            round((time.time() - started) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response


# Add other middleware AFTER CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.exception_handler(InventoryEngineError)
async def inventory_error_handler(request: Request, exc: InventoryEngineError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "reason": "ValidationError",
            "message": "Request validation failed",
            "details": {"errors": jsonable_encoder(exc.errors())},
        }
    )


# Rate limit handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={
            "reason": "RateLimitExceeded",
            "message": "Too many requests, try again later",
            "details": {"limit": str(exc.detail)},
        }
    )


# Include routers
app.include_router(health.router)
app.include_router(bookings.router)
app.include_router(availability.router)


@app.get("/")
async def root():
    return {
        "message": "Rental Inventory Reservation Engine",
        "version": health.VERSION,
        "docs": "/docs",
        "status": "running"
    }
