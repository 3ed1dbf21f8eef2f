"""PeerLab Gateway main application."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from peerlab_gateway.api import service_router, user_router
from peerlab_gateway.api.deps import validate_auth_config
from peerlab_gateway.api.errors import register_exception_handlers
from peerlab_gateway.api.schemas import ErrorResponse, HealthResponse
from peerlab_gateway.auth import AgentSecretAuthenticator, Authenticator, UserTokenAuthenticator
from peerlab_gateway.config import settings
from peerlab_gateway.db.base import close_db, init_db
from peerlab_gateway.engine import AsnPool, PrefixPool
from peerlab_gateway.integrations import IdentityProviderClient
from peerlab_gateway.observability.metrics import metrics
from peerlab_gateway.tasks.sweep import start_lease_cleanup, stop_lease_cleanup

VERSION = "0.1.0"

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("peerlab_gateway")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting PeerLab Gateway...")
    logger.info(f"Environment: {settings.env.value}")

    # Validate authentication configuration (fail fast if insecure)
    validate_auth_config()

    state = app.state
    if state.asn_pool is None:
        state.asn_pool = AsnPool(settings.asn_pool_start, settings.asn_pool_end)
    if state.prefix_pool is None:
        # A missing prefix file is fatal
        state.prefix_pool = PrefixPool.from_file(settings.prefix_pool_file)
    if state.user_authenticator is None:
        state.user_authenticator = UserTokenAuthenticator.from_settings(settings)
    if state.agent_authenticator is None:
        state.agent_authenticator = AgentSecretAuthenticator.from_settings(settings)
    if state.identity_client is None:
        state.identity_client = IdentityProviderClient.from_settings(settings)

    logger.info(
        f"Pools ready: ASNs {state.asn_pool.start}-{state.asn_pool.end}, "
        f"{len(state.prefix_pool)} prefixes"
    )

    await init_db()
    logger.info("Database initialized")

    if settings.lease_cleanup_enabled:
        await start_lease_cleanup()
        logger.info("Lease cleanup task started")

    yield

    logger.info("Shutting down PeerLab Gateway...")
    await stop_lease_cleanup()
    await close_db()
    logger.info("Shutdown complete")


async def access_log_middleware(request: Request, call_next):
    """Log method, path, status and latency for every request."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    metrics.inc_counter("http.requests")
    metrics.observe("http.request.duration_ms", elapsed_ms)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)"
    )
    return response


def create_app(
    asn_pool: Optional[AsnPool] = None,
    prefix_pool: Optional[PrefixPool] = None,
    user_authenticator: Optional[Authenticator] = None,
    agent_authenticator: Optional[Authenticator] = None,
    identity_client: Optional[IdentityProviderClient] = None,
) -> FastAPI:
    """
    Build the application.

    Anything not passed in is built from settings when the lifespan starts.
    Pools live on ``app.state`` for the lifetime of the process.
    """
    app = FastAPI(
        title="PeerLab Gateway",
        description="ASN assignment and IPv6 /48 prefix leasing for the PeerLab network",
        version=VERSION,
        lifespan=lifespan,
        responses={
            401: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
        },
    )

    app.state.asn_pool = asn_pool
    app.state.prefix_pool = prefix_pool
    app.state.user_authenticator = user_authenticator
    app.state.agent_authenticator = agent_authenticator
    app.state.identity_client = identity_client

    app.middleware("http")(access_log_middleware)

    # Explicit allowlist, no wildcards with credentials
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allowed_methods,
        allow_headers=settings.cors_allowed_headers,
    )

    register_exception_handlers(app)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(status="healthy", version=VERSION)

    app.include_router(user_router)
    app.include_router(service_router)
    return app


app = create_app()


def main():
    """Entry point for the application."""
    uvicorn.run(
        "peerlab_gateway.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
