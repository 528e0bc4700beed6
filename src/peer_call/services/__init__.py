"""Services package for the call subsystem components."""

from .call_coordinator import CallCoordinator
from .ice import build_rtc_configuration, resolve_ice_servers
from .media_base import MediaDevices
from .media_controller import LocalMediaHandle, MediaController
from .media_devices import PlayerMediaDevices
from .peer_session import PeerSession
from .relay_base import RelayChannel, RelayFrame
from .relay_hub import RelayHub
from .relay_ws import WebSocketRelayChannel
from .signaling_client import SignalingClient
from .tracks import LocalTrack

__all__ = [
    "CallCoordinator",
    "build_rtc_configuration",
    "resolve_ice_servers",
    "MediaDevices",
    "LocalMediaHandle",
    "MediaController",
    "PlayerMediaDevices",
    "PeerSession",
    "RelayChannel",
    "RelayFrame",
    "RelayHub",
    "WebSocketRelayChannel",
    "SignalingClient",
    "LocalTrack",
]
