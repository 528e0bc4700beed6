"""FastAPI application factory for the peer call service."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .deps import get_call_coordinator, get_signaling_client
from .errors import SignalingUnreachable
from .logging_config import setup_logging
from .routers import controls_router, relay_router
from .services.call_coordinator import CallCoordinator
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


async def listen_for_calls(coordinator: CallCoordinator, settings: Settings) -> None:
    """Keep trying to reach the relay until we can be rung.

    The relay may be this very service, which only accepts connections once
    startup has finished, so the first attempts are expected to fail.
    """
    delay = max(settings.relay_reconnect_delay, 0.1)
    while True:
        try:
            await coordinator.listen()
        except SignalingUnreachable as e:
            logger.warning(f"Cannot listen for calls yet, retrying in {delay:.1f}s: {e}")
            await asyncio.sleep(delay)
            delay = min(delay * 2, settings.relay_reconnect_max_delay)
            continue
        logger.info(f"Listening for calls to {settings.user_id}")
        return


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the call configuration on startup; hang up and close the relay on shutdown."""
    settings = get_settings()
    logger.info(f"Peer call service listening on {settings.host}:{settings.port}")
    logger.info(f"Relay: {settings.relay_url}, ICE servers: {len(settings.ice_servers)}")
    if settings.turn_credentials_url:
        logger.info(f"TURN credentials from {settings.turn_credentials_url}")

    coordinator = get_call_coordinator()
    listener = None
    if settings.user_id:
        listener = asyncio.create_task(listen_for_calls(coordinator, settings))

    yield

    if listener is not None:
        listener.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await listener
    if coordinator.session.is_active:
        logger.info(f"Hanging up call in room {coordinator.session.room_id} on shutdown")
    await coordinator.close()
    await get_signaling_client().close()
    logger.info("Peer call service stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        App serving ``/api/call`` and the ``/relay`` WebSocket
    """
    setup_logging(get_settings().log_level)

    app = FastAPI(
        title="Peer Call",
        description="One-to-one audio/video calls over WebRTC with a signaling relay",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(relay_router, tags=["relay"])
    app.include_router(controls_router, tags=["controls"])

    return app


app = create_app()
