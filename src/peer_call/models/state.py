"""Call session state and its transition functions.

A ``CallSession`` is an immutable value. The coordinator replaces it through
the functions in this module so that the state, role and media flags can
only change together and only along the edges listed in ``TRANSITIONS``.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from ..errors import CallError, InvalidTransition


class CallState(str, Enum):
    """Lifecycle states of a call."""

    IDLE = "idle"
    REQUESTING = "requesting"
    WAITING = "waiting"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    ENDED = "ended"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallState.ENDED, CallState.FAILED)


class CallRole(str, Enum):
    """Which side produced the offer."""

    UNKNOWN = "unknown"
    INITIATOR = "initiator"
    RESPONDER = "responder"


TRANSITIONS = {
    CallState.IDLE: {CallState.REQUESTING, CallState.ENDED},
    CallState.REQUESTING: {CallState.WAITING, CallState.ENDED, CallState.FAILED},
    CallState.WAITING: {CallState.NEGOTIATING, CallState.ENDED, CallState.FAILED},
    CallState.NEGOTIATING: {CallState.CONNECTED, CallState.ENDED, CallState.FAILED},
    CallState.CONNECTED: {CallState.ENDED, CallState.FAILED},
    CallState.ENDED: set(),
    CallState.FAILED: set(),
}


@dataclass(frozen=True)
class CallSession:
    """Snapshot of one call as seen by the local side."""

    room_id: Optional[str] = None
    state: CallState = CallState.IDLE
    role: CallRole = CallRole.UNKNOWN
    peer_id: Optional[str] = None
    is_muted: bool = False
    is_video_off: bool = False
    is_screen_sharing: bool = False
    video_unavailable: bool = False
    end_reason: Optional[str] = None
    error: Optional[CallError] = None

    @property
    def is_active(self) -> bool:
        """True while the session holds (or is acquiring) resources."""
        return self.state is not CallState.IDLE and not self.state.is_terminal

    def to_dict(self) -> dict:
        return {
            "room_id": self.room_id,
            "state": self.state.value,
            "role": self.role.value,
            "peer_id": self.peer_id,
            "is_muted": self.is_muted,
            "is_video_off": self.is_video_off,
            "is_screen_sharing": self.is_screen_sharing,
            "video_unavailable": self.video_unavailable,
            "end_reason": self.end_reason,
            "error": str(self.error) if self.error else None,
        }


def begin(room_id: str) -> CallSession:
    """Create a session for ``room_id`` that is requesting local media."""
    if not room_id:
        raise ValueError("room_id is required")
    return CallSession(room_id=room_id, state=CallState.REQUESTING)


def transition(session: CallSession, target: CallState, **changes) -> CallSession:
    """Move ``session`` to ``target``, applying field ``changes`` in the same step.

    Raises:
        InvalidTransition: If the state machine has no such edge
    """
    if target not in TRANSITIONS[session.state]:
        raise InvalidTransition(f"{session.state.value} -> {target.value}")
    return replace(session, state=target, **changes)


def media_ready(session: CallSession, video_unavailable: bool, has_camera: bool) -> CallSession:
    """Requesting -> Waiting once local media is in hand.

    A call without a camera (fallen back to audio-only, or video not
    requested) starts with video off.
    """
    return transition(
        session,
        CallState.WAITING,
        video_unavailable=video_unavailable,
        is_video_off=session.is_video_off or not has_camera,
    )


def assign_role(session: CallSession, role: CallRole, peer_id: str) -> CallSession:
    """Waiting -> Negotiating with the role taken for ``peer_id``."""
    if role is CallRole.UNKNOWN:
        raise ValueError("a negotiating session needs a concrete role")
    return transition(session, CallState.NEGOTIATING, role=role, peer_id=peer_id)


def connected(session: CallSession) -> CallSession:
    return transition(session, CallState.CONNECTED)


def with_flags(
    session: CallSession,
    is_muted: Optional[bool] = None,
    is_video_off: Optional[bool] = None,
    is_screen_sharing: Optional[bool] = None,
) -> CallSession:
    """Self-transition updating media flags; the state is left unchanged."""
    if session.state.is_terminal:
        raise InvalidTransition(f"cannot change media flags in {session.state.value}")
    changes = {}
    if is_muted is not None:
        changes["is_muted"] = is_muted
    if is_video_off is not None:
        changes["is_video_off"] = is_video_off
    if is_screen_sharing is not None:
        changes["is_screen_sharing"] = is_screen_sharing
    return replace(session, **changes)


def end(session: CallSession, reason: str) -> CallSession:
    """Move to Ended. Ending an already terminal session returns it unchanged."""
    if session.state.is_terminal:
        return session
    return transition(session, CallState.ENDED, end_reason=reason)


def fail(session: CallSession, error: CallError, reason: Optional[str] = None) -> CallSession:
    """Move to Failed recording ``error``. Terminal sessions are returned unchanged."""
    if session.state.is_terminal:
        return session
    return transition(
        session,
        CallState.FAILED,
        error=error,
        end_reason=reason or type(error).__name__,
    )
