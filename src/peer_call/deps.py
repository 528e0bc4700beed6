"""Dependency injection and service wiring."""

import logging
from functools import lru_cache

from .models.signals import IncomingCall
from .services import (
    CallCoordinator,
    MediaController,
    PlayerMediaDevices,
    RelayHub,
    SignalingClient,
    WebSocketRelayChannel,
)
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_relay_hub() -> RelayHub:
    """Get singleton relay hub instance."""
    return RelayHub()


@lru_cache()
def get_media_controller(settings: Settings = None) -> MediaController:
    """Get media controller instance.

    Args:
        settings: Application settings (injected)

    Returns:
        Media controller using ffmpeg capture devices
    """
    if settings is None:
        settings = get_settings()

    return MediaController(PlayerMediaDevices(settings))


@lru_cache()
def get_signaling_client(settings: Settings = None) -> SignalingClient:
    """Get signaling client instance.

    Args:
        settings: Application settings (injected)

    Returns:
        Signaling client over the WebSocket relay
    """
    if settings is None:
        settings = get_settings()

    channel = WebSocketRelayChannel(
        settings.relay_url,
        connect_timeout=settings.signaling_connect_timeout,
        reconnect_delay=settings.relay_reconnect_delay,
        reconnect_max_delay=settings.relay_reconnect_max_delay,
        user_id=settings.user_id,
    )
    return SignalingClient(channel)


def log_incoming_call(event: IncomingCall) -> None:
    """Tell the operator how to answer a ring."""
    caller = event.caller.get("name") or event.caller.get("id") or "unknown caller"
    logger.info(
        f"Incoming call from {caller} in room {event.room_id}: "
        f"POST /api/call/start to accept or /api/call/reject to decline"
    )


@lru_cache()
def get_call_coordinator() -> CallCoordinator:
    """Get singleton call coordinator instance."""
    settings = get_settings()
    return CallCoordinator(
        media=get_media_controller(),
        signaling=get_signaling_client(),
        settings=settings,
        on_incoming_call=log_incoming_call,
    )


# Dependency factories for FastAPI
def get_settings_dependency() -> Settings:
    """FastAPI dependency for settings."""
    return get_settings()


def get_relay_hub_dependency() -> RelayHub:
    """FastAPI dependency for the relay hub."""
    return get_relay_hub()


def get_call_coordinator_dependency() -> CallCoordinator:
    """FastAPI dependency for the call coordinator."""
    return get_call_coordinator()
