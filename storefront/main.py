"""
Storefront Order Service - Main FastAPI Application

Order placement, payment verification and order status management.
"""

from contextlib import asynccontextmanager
import os
import time as _time
import traceback
import uuid

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse
import uvicorn

# Load environment variables from .env file before config is read
load_dotenv()

from storefront.api import admin_router, router  # noqa: E402
from storefront.database import SessionLocal, init_db  # noqa: E402
from storefront.errors import StorefrontError  # noqa: E402
from storefront.logger import get_logger  # noqa: E402
from storefront.metrics import record_request_metrics  # noqa: E402
from storefront.structured_logger import log_request, log_response  # noqa: E402

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan handler: create tables if they don't exist.
    In production, use migrations instead.
    """
    if os.getenv("STOREFRONT_SKIP_CREATE_TABLES", "0") != "1":
        try:
            init_db()
        except Exception as e:
            logger.warning(f"Could not run create_all: {e}. Tables should already exist.")
    yield


# Initialize FastAPI application
app = FastAPI(
    title="Storefront Order Service",
    description="Order placement, payment reconciliation and inventory for the storefront",
    version="1.0.0",
    lifespan=lifespan,
)

# Enable CORS for development
# In production, configure this more strictly
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LatencyMetricsMiddleware(BaseHTTPMiddleware):
    """Logs each non-OPTIONS request/response pair and records latency and 5xx errors per route."""

    async def dispatch(self, request: StarletteRequest, call_next) -> StarletteResponse:
        if request.method == "OPTIONS":
            return await call_next(request)
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:12]
        log_request(request.url.path, request_id, method=request.method)
        t0 = _time.perf_counter()
        response = await call_next(request)
        duration_ms = (_time.perf_counter() - t0) * 1000
        route = request.scope.get("route")
        endpoint = f"{request.method} {getattr(route, 'path', request.url.path)}"
        record_request_metrics(endpoint, duration_ms, is_error=response.status_code >= 500)
        log_response(endpoint, request_id, response.status_code, duration_ms)
        response.headers["X-Request-Id"] = request_id
        logger.debug(f"[LATENCY] {endpoint} -> {response.status_code} {duration_ms:.1f}ms")
        return response


app.add_middleware(LatencyMetricsMiddleware)

app.include_router(router)
app.include_router(admin_router)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    """Domain errors carry their own status code and machine-readable code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400), reported field by field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=400,
        content={"error": message, "code": "INVALID", "details": [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors
        ]},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return 500."""
    logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "ERROR"},
    )


#
# Health Check
#

@app.get("/health")
def health_check():
    """Health check including database connectivity."""
    health_status = {"service": "healthy", "database": "unknown"}
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["database"] = "healthy"
    except Exception as e:
        health_status["database"] = f"unhealthy: {str(e)}"
        health_status["service"] = "degraded"
    return health_status


#
# Development Server
#

if __name__ == "__main__":
    uvicorn.run(
        "storefront.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True
    )
