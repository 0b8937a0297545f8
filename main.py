"""
FastAPI Application Entry Point
Sales Export Ingestion - Python Backend

Every log line emitted while a request is in flight carries its request id,
so one upload can be followed from the router through the ingestion services.
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
import os
import asyncio
import logging
import json
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Dict, List
from collections import defaultdict

from routers import uploads, customers
from database import init_db, check_db_health, DATABASE_URL
from services.exceptions import InputMalformedError
from settings import (
    CORS_ORIGINS,
    LOG_LEVEL,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_RPM,
    RATE_LIMITED_METHODS,
    init_db_on_startup,
)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


# ---- Logging setup (JSON, one object per line) ----
class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "rid": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = LOG_LEVEL) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # INFO echoes SQL
    # openpyxl warns once per workbook about unsupported extensions
    logging.getLogger("openpyxl").setLevel(logging.ERROR)


configure_logging()
logger = logging.getLogger(__name__)


# ---- Middleware ----
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns X-Request-Id, exposes it on request.state and in log records."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start = time.time()
        try:
            # Body is not read here; uploads can be large
            logger.info(f"REQ {request.method} {request.url.path}")
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(f"Uncaught exception serving {request.method} {request.url.path}")
                raise
            dur_ms = int((time.time() - start) * 1000)
            logger.info(f"RES {request.method} {request.url.path} status={response.status_code} durMs={dur_ms}")
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-Id"] = request_id
        return response


class WriteRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-IP one-minute sliding window over state-changing API calls.
    Reads (record listings, reports, health) are never limited.
    """

    def __init__(self, app, requests_per_minute: int = 60, methods=RATE_LIMITED_METHODS):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.methods = frozenset(methods)
        self.window_seconds = 60
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._lock = asyncio.Lock()

    def _limited(self, request: Request) -> bool:
        return request.method in self.methods and request.url.path.startswith("/api/")

    async def dispatch(self, request: Request, call_next: Callable):
        if not self._limited(request):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        async with self._lock:
            hits = [t for t in self._hits[client_ip] if now - t < self.window_seconds]
            if len(hits) >= self.requests_per_minute:
                self._hits[client_ip] = hits
                logger.warning(f"Write rate limit exceeded for {client_ip} on {request.url.path}")
                return JSONResponse(
                    status_code=429,
                    content={"error": "Rate limit exceeded", "retry_after_seconds": self.window_seconds},
                    headers={"Retry-After": str(self.window_seconds)},
                )
            hits.append(now)
            self._hits[client_ip] = hits
            remaining = self.requests_per_minute - len(hits)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(max(0, remaining))
        return response


app = FastAPI(
    title="Sales Ingestion API",
    description="Normalizes Shopify and Gazelle sales exports into one record store",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
)
if RATE_LIMIT_ENABLED:
    app.add_middleware(WriteRateLimitMiddleware, requests_per_minute=RATE_LIMIT_RPM)
    logger.info(f"Write rate limiting enabled: {RATE_LIMIT_RPM} requests/minute")
# Added last so it wraps everything and rate-limit rejections carry an id too
app.add_middleware(RequestIDMiddleware)


@app.get("/")
async def root_status():
    return {"ok": True, "service": "sales-ingestion"}


@app.get("/healthz")
async def healthz():
    """Liveness only; does not touch the database."""
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    db_health = await check_db_health()
    return {
        "status": "healthy" if db_health["status"] == "healthy" else "degraded",
        "database": db_health,
        "timestamp": time.time(),
    }


# --- Error handlers ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "error": "Validation failed"})


@app.exception_handler(InputMalformedError)
async def malformed_input_handler(request: Request, exc: InputMalformedError):
    logger.warning(f"Malformed input on {request.url.path}: {exc}")
    return JSONResponse(status_code=422, content={"error": str(exc)})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Routers ---
app.include_router(uploads.router, prefix="/api", tags=["uploads"])
app.include_router(customers.router, prefix="/api", tags=["customers"])


# --- Startup/shutdown ---
@app.on_event("startup")
async def startup():
    logger.info("Starting Sales Ingestion API...")
    if not init_db_on_startup(DATABASE_URL):
        logger.info("Skipping DB init on startup")
        return
    try:
        await asyncio.wait_for(init_db(), timeout=120)
        logger.info("Sales tables ready")
    except asyncio.TimeoutError:
        logger.error("DB init timed out after 120s, continuing without init")
    except Exception as e:
        logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down Sales Ingestion API...")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production"
    )
