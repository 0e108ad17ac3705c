"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from solrelay import __version__
from solrelay.chain import create_chain_client
from solrelay.config import get_settings
from solrelay.errors import RelayError, ValidationError
from solrelay.ledger.database import close_db, init_db
from solrelay.routing import create_aggregator
from solrelay.services.relay import RelayOrchestrator
from solrelay.wallets.manager import WalletManager

logger = logging.getLogger(__name__)


def build_relay() -> RelayOrchestrator:
    """Wire the relay from settings."""
    settings = get_settings()
    return RelayOrchestrator(
        chain=create_chain_client(settings),
        aggregator=create_aggregator(settings),
        wallets=WalletManager(settings),
        settings=settings,
    )


async def shutdown_relay(relay: RelayOrchestrator) -> None:
    await relay.wallets.close()
    await relay.aggregator.close()
    await relay.chain.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    owns_relay = getattr(app.state, "relay", None) is None
    if owns_relay:
        app.state.relay = build_relay()
    swept = await app.state.relay.wallets.sweep_stale()
    if swept:
        logger.warning(f"Startup sweep removed {swept} stale wallet(s)")
    yield
    # Shutdown
    if owns_relay:
        await shutdown_relay(app.state.relay)
    await close_db()


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"{request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.info(f"{request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    error = ValidationError(errors)
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


def create_app(relay: Optional[RelayOrchestrator] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        relay: Pre-built orchestrator; built from settings at startup if None
    """
    settings = get_settings()

    app = FastAPI(
        title="Solrelay API",
        description="Custodial SOL -> token swap relay",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
        docs_url=None,
        redoc_url=None,
    )
    if relay is not None:
        app.state.relay = relay

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Register routes
    from solrelay.api.routes import health, relay as relay_routes

    app.include_router(health.router, tags=["Health"])
    app.include_router(relay_routes.router, prefix="/api", tags=["Relay"])

    return app


# Default app instance
app = create_app()
