"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Per-request logs from the HTTP client would drown the activity log
for _noisy in ("httpx", "httpcore", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from forwarder import __version__
from forwarder.api import router, manager, websocket_endpoint
from forwarder.clients import TronRestClient
from forwarder.config import ForwardingConfig, get_settings
from forwarder.services import ApprovalQueueSigner, ForwardingMonitor

APP_NAME = "Multisig Auto-Forwarder"

# Seconds an in-flight forward may take to finish during shutdown
SHUTDOWN_TIMEOUT = 30

logger = logging.getLogger(__name__)


def build_monitor(config: ForwardingConfig) -> tuple[ForwardingMonitor, TronRestClient]:
    """Assemble the monitor with the TRON client and the interactive co-signer."""
    client = TronRestClient(config.ledger_endpoint, api_key=config.ledger_api_key)
    signer = ApprovalQueueSigner(timeout=config.signer_timeout)
    monitor = ForwardingMonitor(config, client, signer)

    monitor.activity.subscribe(manager.on_log_entry)
    monitor.pipeline.on_step(manager.on_run_update)
    return monitor, client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the monitor on startup; drain the active run on shutdown."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    # ConfigurationError propagates and the app refuses to start
    config = ForwardingConfig.from_settings(settings)
    logger.info("Starting forwarder: %s", config)

    monitor, client = build_monitor(config)
    try:
        await monitor.initialize()
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        await client.close()
        raise

    app.state.monitor = monitor

    yield

    logger.info("Shutting down...")
    app.state.monitor = None
    monitor.activity.unsubscribe(manager.on_log_entry)
    await monitor.shutdown(timeout=SHUTDOWN_TIMEOUT)
    await client.close()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create the FastAPI application (orjson responses, open CORS for the console)."""
    application = FastAPI(
        title=APP_NAME,
        description="2-of-2 multisig TRX auto-forwarder",
        version=__version__,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict this
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.include_router(router, prefix="/api")
    application.websocket("/ws")(websocket_endpoint)

    @application.get("/")
    async def root():
        return {"name": APP_NAME, "version": __version__, "docs": "/docs"}

    @application.get("/health")
    async def health(request: Request):
        monitor = getattr(request.app.state, "monitor", None)
        return {
            "status": "healthy" if monitor is not None else "starting",
            "monitoring": bool(monitor and monitor.is_running),
            "websocket_clients": manager.connection_count,
        }

    return application


app = create_app()


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "forwarder.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
