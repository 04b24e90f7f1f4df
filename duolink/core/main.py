"""
Duolink - Main FastAPI application.

Two-party WebRTC signaling relay with an optional user directory.
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
import logging
import uvicorn

from duolink.core.config import settings
from duolink.core.memory.db import init_db
from duolink.core.memory.directory import SqlUserDirectory
from duolink.core.api import calls, contacts, health, users
from duolink.core.signaling import SignalingRelay
from duolink.core.signaling.routes import websocket_endpoint

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Lifespan event handlers
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    # Startup
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized")

    directory = SqlUserDirectory()
    try:
        stale = await directory.reset_connections()
        if stale:
            logger.info("Cleared %d stale connection records", stale)
    except Exception as e:
        logger.warning("Could not clear stale connection records: %s", e)

    relay = SignalingRelay(directory=directory)
    await relay.start()
    app.state.relay = relay
    logger.info(
        "Duolink binding on %s:%s (from config/.env: API_HOST, API_PORT)",
        settings.api_host,
        settings.api_port,
    )

    yield

    # Shutdown (RelayServer has usually broadcast already)
    if relay.running:
        await relay.shutdown()
    logger.info("Duolink shutting down")


# Create FastAPI app
app = FastAPI(
    title="Duolink",
    description="Two-party WebRTC signaling relay",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests. Health checks at DEBUG to reduce log spam."""
    path = request.url.path
    level = logger.debug if path == "/health" else logger.info
    level(f"{request.method} {path}")
    response = await call_next(request)
    level(f"{request.method} {path} - {response.status_code}")
    return response


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder({"detail": exc.errors(), "body": exc.body}),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc) if settings.debug else None,
        },
    )


# WebSocket signaling endpoint
app.add_api_websocket_route("/ws", websocket_endpoint)

# Include routers
app.include_router(health.router)
app.include_router(users.router)
app.include_router(contacts.router)
app.include_router(calls.router)


class RelayServer(uvicorn.Server):
    """
    uvicorn server that says goodbye to relay clients first.

    uvicorn closes open WebSockets (1012) before the lifespan teardown runs,
    so the relay has to broadcast ``server-shutdown`` from here.
    """

    async def shutdown(self, sockets=None) -> None:
        relay = getattr(app.state, "relay", None)
        if relay is not None and relay.running:
            logger.info("Shutdown requested, notifying relay clients")
            await relay.shutdown()
        await super().shutdown(sockets=sockets)


def run() -> None:
    """Console entry point."""
    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )
    RelayServer(config).run()


if __name__ == "__main__":
    run()
