"""Peer call package for one-to-one WebRTC audio/video calls."""

from .errors import (
    CallError,
    MediaUnavailable,
    NegotiationTimeout,
    PeerConnectionFailed,
    ScreenShareUnavailable,
    SignalingUnreachable,
)
from .models import CallRole, CallSession, CallState
from .services import CallCoordinator, MediaController, PeerSession, SignalingClient

__all__ = [
    "CallError",
    "MediaUnavailable",
    "NegotiationTimeout",
    "PeerConnectionFailed",
    "ScreenShareUnavailable",
    "SignalingUnreachable",
    "CallRole",
    "CallSession",
    "CallState",
    "CallCoordinator",
    "MediaController",
    "PeerSession",
    "SignalingClient",
]
