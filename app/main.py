"""
main.py — Condo Assistance Core application

Builds the FastAPI app: middleware, exception handlers, routers and the
background scheduler lifecycle.

Business Rules:
- Every response carries X-Request-ID (uuid4()[:8]) and the OWASP
  security headers
- Domain errors map to structured ErrorResponse JSON; auth failures are
  rendered with one vague message, the precise reason stays in the logs
  and security_events
- The scheduler is not started when TESTING is set

Called by: uvicorn (app.main:app)
Depends on: config, logging_config, scheduler, routers
"""

import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from .config import settings
from .exceptions import AuthError, CondoError
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers.admin import router as admin_router
from .routers.monitoring import router as monitoring_router
from .routers.portal import router as portal_router
from .schemas.errors import ErrorResponse

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    started = False
    if not os.environ.get("TESTING"):
        from .scheduler import configure_scheduler, scheduler

        configure_scheduler()
        scheduler.start()
        started = True
        logger.info("Scheduler started")
    yield
    if started:
        from .scheduler import scheduler

        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


app = FastAPI(title="Condo Assistance Core", version=APP_VERSION, lifespan=lifespan)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    https_only=settings.is_production,
    same_site="lax",
)


# ── Middleware ─────────────────────────────────────────────────────────


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["X-API-Version"] = "v1"
    return response


# ── Exception handlers ─────────────────────────────────────────────────


def _error(request: Request, status_code: int, message: str, detail: list | None = None) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", ""),
        detail=detail,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    logger.info("Portal auth rejected on {}: {} ({})", request.url.path, type(exc).__name__, exc.message)
    return _error(request, exc.status_code, exc.public_message)


@app.exception_handler(CondoError)
async def condo_error_handler(request: Request, exc: CondoError):
    logger.info("{} on {}: {}", type(exc).__name__, request.url.path, exc.message)
    return _error(request, exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = [
        {"loc": list(e.get("loc", [])), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return _error(request, 422, "Validation error", detail)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("HTTP rate limit exceeded on {} from {}", request.url.path, request.client.host if request.client else "?")
    return _rate_limit_exceeded_handler(request, exc)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on {}: {}", request.url.path, exc)
    return _error(request, 500, "Internal server error")


# ── Routes ─────────────────────────────────────────────────────────────


@app.get("/health")
async def health():
    return {"status": "ok", "version": APP_VERSION}


app.include_router(portal_router)
app.include_router(admin_router)
app.include_router(monitoring_router)
