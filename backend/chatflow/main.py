"""ChatFlow Backend Application.

This is the main entry point for the ChatFlow backend service: a real-time
chat relay that authenticates WebSocket clients, replays recent history and
fans out new messages after persisting them.

Modules:
    - auth: Registration, login and signed identity tokens
    - relay: WebSocket relay (connection registry, history, fan-out)
    - store: DuckDB persistence for accounts and messages
    - client: Python client session speaking the relay protocol
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatflow.auth.router import router as auth_router
from chatflow.config import get_config
from chatflow.relay.manager import RelayManager
from chatflow.relay.router import router as relay_router
from chatflow.store.database import ChatDatabase
from chatflow.store.messages import DuckDBMessageStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    database = ChatDatabase.get_instance()
    logger.info(
        f"ChatFlow relay ready on port {config.server.port} "
        f"(db={database.db_path}, origins={config.server.allowed_origins})"
    )

    yield  # Application runs here

    # Shutdown
    ChatDatabase.reset_instance()
    logger.info("Application shutdown complete")


def create_app(relay: Optional[RelayManager] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        relay: Relay manager to serve. Defaults to one backed by the DuckDB
            message store; tests pass a manager with a fake store.
    """
    config = get_config()

    app = FastAPI(
        title="ChatFlow API",
        description="Real-time chat relay with persisted history",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.relay = relay or RelayManager(store=DuckDBMessageStore())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report malformed request bodies with the API's error shape."""
        logger.debug("Rejected request to %s: %s", request.url.path, exc.errors())
        return JSONResponse({"message": "Invalid request body"}, status_code=400)

    # Register all routers
    app.include_router(auth_router)
    app.include_router(relay_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object with the number of live relay connections.
        """
        return {"status": "ok", "connections": app.state.relay.connection_count}

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host/port."""
    config = get_config()
    uvicorn.run(
        "chatflow.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    run()
