"""Data models and schemas for the peer call application."""

from .schemas import IceServer, StartCallRequest, SessionResponse, HangupResponse, HealthResponse
from .signals import (
    SignalKind,
    SignalEnvelope,
    PeerJoined,
    SignalReceived,
    CallRejected,
    CallEnded,
    IncomingCall,
    SignalingEvent,
)
from .state import CallState, CallRole, CallSession

__all__ = [
    "IceServer",
    "StartCallRequest",
    "SessionResponse",
    "HangupResponse",
    "HealthResponse",
    "SignalKind",
    "SignalEnvelope",
    "PeerJoined",
    "SignalReceived",
    "CallRejected",
    "CallEnded",
    "IncomingCall",
    "SignalingEvent",
    "CallState",
    "CallRole",
    "CallSession",
]
