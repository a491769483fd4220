"""
Main FastAPI application for the course platform API.
Serves health, certificates, payments, enrollments, oauth and metrics.
"""
import logging
import time
import traceback
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from app.api.routes import certificates, enrollments, health, oauth, payments
from app.core.config import settings
from app.core.errors import AppError
from app.core.logging import configure_logging
from app.utils.metrics import router as metrics_router


configure_logging()
logger = logging.getLogger("app")

app = FastAPI(
    title="Course Platform API",
    description="Certificates, payments, enrollments and OAuth sign-in",
    version="1.0.0",
)

# CORS
origins = settings.cors_origins_list or ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_log(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid4().hex
    start = time.time()
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "latency_ms": int((time.time() - start) * 1000),
        },
    )
    return response


def _error_body(code: str, message: str, errors: list | None = None, exc: Exception | None = None) -> dict:
    body = {"success": False, "code": code, "message": message}
    if errors:
        body["errors"] = errors
    if exc is not None and settings.is_development:
        body["details"] = {
            "exception": repr(exc),
            "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
    return body


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", extra={"path": request.url.path, "error": exc.message, "error_code": exc.code})
    else:
        logger.info("request_rejected", extra={"path": request.url.path, "error": exc.message, "error_code": exc.code})
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message, getattr(exc, "errors", None), exc),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION_ERROR", f"Validation failed: {', '.join(errors)}", errors),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning("integrity_conflict", extra={"path": request.url.path, "error": str(exc.orig)})
    return JSONResponse(
        status_code=409,
        content=_error_body("CONFLICT", "Resource already exists or violates a constraint", exc=exc),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content=_error_body("INTERNAL_ERROR", "Internal server error", exc=exc))


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(certificates.router)
app.include_router(payments.router)
app.include_router(enrollments.router)
app.include_router(oauth.router)
app.include_router(metrics_router)
