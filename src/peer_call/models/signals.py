"""Signaling envelopes, relay event names and typed signaling events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

# Relay event names
JOIN_ROOM = "joinRoom"
LEAVE_ROOM = "leaveRoom"
USER_JOINED = "user-joined"
CALL_SIGNAL = "call:signal"
CALL_REJECTED = "call:rejected"
CALL_ENDED = "call:ended"
CALL_START = "call:start"
CALL_INCOMING = "call:incoming"
CONNECT = "connect"


class SignalKind(str, Enum):
    """Kinds of messages exchanged between the two peers of a call."""

    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    CALL_ENDED = "call-ended"
    CALL_REJECTED = "call-rejected"

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> Optional["SignalKind"]:
        """Classify a ``call:signal`` payload, or None if it is not recognised."""
        if not isinstance(payload, dict):
            return None
        kind = payload.get("type")
        if kind == "offer":
            return cls.OFFER
        if kind == "answer":
            return cls.ANSWER
        if kind == "candidate" or "candidate" in payload:
            return cls.CANDIDATE
        return None


@dataclass(frozen=True)
class SignalEnvelope:
    """One outgoing or incoming signaling message."""

    kind: SignalKind
    to: Optional[str] = None
    from_: Optional[str] = None
    room_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_relay(self) -> Tuple[str, Dict[str, Any]]:
        """Map the envelope onto a relay ``(event, data)`` pair."""
        if self.kind is SignalKind.CALL_ENDED:
            return CALL_ENDED, {"roomId": self.room_id}
        if self.kind is SignalKind.CALL_REJECTED:
            return CALL_REJECTED, {"roomId": self.room_id}

        data: Dict[str, Any] = {"to": self.to, "signal": self.payload}
        if self.from_ is not None:
            data["from"] = self.from_
        return CALL_SIGNAL, data


@dataclass(frozen=True)
class PeerJoined:
    peer_id: str


@dataclass(frozen=True)
class SignalReceived:
    from_: Optional[str]
    payload: Dict[str, Any]

    @property
    def kind(self) -> Optional[SignalKind]:
        return SignalKind.from_payload(self.payload)

    def to_envelope(self, room_id: Optional[str] = None, to: Optional[str] = None) -> Optional[SignalEnvelope]:
        """Wrap as an envelope, or None when the payload kind is unknown."""
        kind = self.kind
        if kind is None:
            return None
        return SignalEnvelope(kind=kind, to=to, from_=self.from_, room_id=room_id, payload=self.payload)


@dataclass(frozen=True)
class CallRejected:
    room_id: Optional[str] = None


@dataclass(frozen=True)
class CallEnded:
    room_id: Optional[str] = None


@dataclass(frozen=True)
class IncomingCall:
    room_id: str
    caller: Dict[str, Any] = field(default_factory=dict)


SignalingEvent = Union[PeerJoined, SignalReceived, CallRejected, CallEnded, IncomingCall]
