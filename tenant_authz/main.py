"""
tenant-authz - multi-tenant authorization engine

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tenant_authz.config import settings
from tenant_authz.exceptions import (
    DuplicateTemplateError,
    ImmutableResourceError,
    InvalidStateError,
    NotFoundError,
)
from tenant_authz.logging_config import configure_logging
from tenant_authz.middleware.logging import LoggingMiddleware
from tenant_authz.routes.authorization import router as authorization_router
from tenant_authz.routes.metrics import router as metrics_router
from tenant_authz.sentry_config import configure_sentry
from tenant_authz.services.cache import build_cache

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.cache = build_cache()
    yield
    close = getattr(app.state.cache, "close", None)
    if close is not None:
        await close()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Multi-tenant authorization: role templates, role assignment and permission overrides",
    lifespan=lifespan,
)

app.add_middleware(LoggingMiddleware)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

app.include_router(authorization_router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Not found"})


@app.exception_handler(ImmutableResourceError)
@app.exception_handler(InvalidStateError)
@app.exception_handler(DuplicateTemplateError)
async def conflict_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }
