"""FastAPI application entry point.

Dealflow Checkout API - time-limited deals paid through PayFast.
"""

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dealflow.container import Services, build_services
from dealflow.errors import DealflowError
from dealflow.routes import api_router
from dealflow.schemas.common import ErrorDetail, ErrorResponse
from dealflow.settings import get_settings
from dealflow.stores.postgres import init_db, close_db, ping_db, create_tables
from dealflow.stores.redis import init_redis, close_redis

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Connects storage, wires services unless they were injected, and closes
    everything on shutdown.
    """
    # Startup
    settings = get_settings()
    injected = getattr(app.state, "services", None) is not None

    if not injected:
        # Initialize database (deals fall back to the cache tier without it)
        try:
            await init_db()
            await ping_db()
            logger.info("Postgres connected")
            if settings.debug:
                # Dev convenience; production schema comes from alembic
                await create_tables()
        except Exception:
            logger.exception("Postgres init failed")
            await close_db()

        # Initialize Redis (deals fall back to process memory without it)
        try:
            await init_redis()
        except Exception:
            logger.exception("Redis init failed")
            await close_redis()

        app.state.services = build_services()

    logger.info(
        f"{settings.app_name} {settings.app_version} started: "
        f"public_base_url={settings.public_base_url} payfast_sandbox={settings.payfast_sandbox} "
        f"markup={settings.markup_percentage}% expiry={settings.deal_expiry_minutes}min "
        f"opencart={'on' if settings.opencart_base_url else 'off'}"
    )

    yield

    # Shutdown
    if not injected:
        await app.state.services.aclose()
        await close_redis()
        await close_db()


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Time-limited deal checkout with PayFast payment confirmation",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Domain errors -> structured error format with their own status
    @app.exception_handler(DealflowError)
    async def dealflow_exception_handler(request: Request, exc: DealflowError) -> JSONResponse:
        body = ErrorResponse(error=ErrorDetail(**exc.to_dict()))
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

    # Exception handler for structured error format
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        body = ErrorResponse(
            error=ErrorDetail(
                code="INTERNAL_ERROR",
                message=str(exc) if settings.debug else "Internal server error",
            )
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "dealflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
