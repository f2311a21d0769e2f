# main.py — WorkHub API
# Features:
# - Request correlation IDs and timing
# - Security headers
# - Uniform JSON error bodies {message, code, details?, requestId}
# - Background email outbox dispatcher and weekly summary scheduler
# - Health check with DB verification and outbox backlog
# - All routers registered

import os
import json
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import async_session_maker, close_db, get_db_session, init_db
from errors import AppError, code_for_status
from outbox import OUTBOX_DISPATCHER_ENABLED, OutboxDispatcher, pending_count
from storage import STORAGE_PUBLIC_URL, STORAGE_ROOT
from summaries import WEEKLY_SUMMARY_ENABLED, WeeklySummaryScheduler
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("workhub")

VERSION = "1.0.0"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("JWT_SECRET_KEY is not set or shorter than 32 characters; tokens will not survive a restart")

    if os.getenv("SMTP_HOST"):
        logger.info(f"SMTP delivery via {os.getenv('SMTP_HOST')}")
    else:
        warnings.append("SMTP_HOST is not set; outgoing email is only logged")

    if not OUTBOX_DISPATCHER_ENABLED:
        warnings.append("OUTBOX_DISPATCHER_ENABLED=false; queued email waits for POST /api/outbox/dispatch")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting WorkHub API v{VERSION}...")
    await init_db()
    logger.info("Database initialized")
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app)

    dispatcher = OutboxDispatcher(async_session_maker)
    app.state.outbox_dispatcher = dispatcher
    if OUTBOX_DISPATCHER_ENABLED:
        dispatcher.start()
    scheduler = WeeklySummaryScheduler(async_session_maker)
    if WEEKLY_SUMMARY_ENABLED:
        scheduler.start()
    yield
    logger.info("Shutting down WorkHub API...")
    await dispatcher.stop()
    await scheduler.stop()
    await close_db()


app = FastAPI(
    title="WorkHub",
    description="Project and workforce management API: staff, clients, teams, projects, leave, HSE, proposals and finance",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "Content-Disposition"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _error_body(request: Request, message: str, code: str, details=None) -> dict:
    body = {"message": message, "code": code}
    if details is not None:
        body["details"] = details
    body["requestId"] = getattr(request.state, "request_id", None)
    return body


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.message, exc.code, exc.details),
        headers=exc.headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, message, code_for_status(exc.status_code)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=400,
        content=_error_body(request, "Validation failed", "validation_error", errors),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=_error_body(request, "Internal server error", "internal_error"),
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, users, roles, clients, teams, projects, tasks,
    worklogs, documents, reports,
    leave, proposals, hse, finance, audits, outbox,
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(roles.router)
app.include_router(clients.router)
app.include_router(teams.router)
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(worklogs.router)
app.include_router(documents.router)
app.include_router(reports.router)
app.include_router(leave.router)
app.include_router(proposals.router)
app.include_router(hse.router)
app.include_router(finance.router)
app.include_router(audits.router)
app.include_router(outbox.router)

# Uploaded images and documents
app.mount(STORAGE_PUBLIC_URL, StaticFiles(directory=STORAGE_ROOT, check_dir=False), name="uploads")


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity and outbox backlog"""
    db_status = "unknown"
    backlog = None
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            backlog = await pending_count(db)
            break
    except Exception as e:
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "outbox": {
            "pending": backlog,
            "dispatcher": "running" if OUTBOX_DISPATCHER_ENABLED else "disabled",
        },
        "weeklySummary": "scheduled" if WEEKLY_SUMMARY_ENABLED else "disabled",
    }


@app.get("/")
async def root():
    return {
        "name": "WorkHub",
        "version": VERSION,
        "description": "Project and workforce management API",
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
