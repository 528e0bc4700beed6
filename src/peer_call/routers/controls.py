"""Control API router for the local call."""

import logging

from fastapi import APIRouter, Body, Depends, HTTPException

from ..deps import get_call_coordinator_dependency
from ..errors import CallAlreadyActive, CallError, ScreenShareUnavailable, SignalingUnreachable
from ..models.schemas import (
    HangupResponse,
    HealthResponse,
    IncomingCallResponse,
    InviteRequest,
    InviteResponse,
    PendingCallResponse,
    RejectResponse,
    SessionResponse,
    StartCallRequest,
)
from ..models.signals import IncomingCall
from ..models.state import CallSession, CallState
from ..services.call_coordinator import CallCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/call")


def _snapshot(session: CallSession) -> SessionResponse:
    return SessionResponse(**session.to_dict())


def _incoming(event: IncomingCall) -> IncomingCallResponse:
    return IncomingCallResponse(room_id=event.room_id, caller=event.caller)


def _require_active(coordinator: CallCoordinator) -> None:
    if not coordinator.session.is_active:
        raise HTTPException(status_code=409, detail="No active call")


@router.post("/start", response_model=SessionResponse)
async def api_start(
    request: StartCallRequest,
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> SessionResponse:
    """Enter a call room (also how an incoming call is accepted).

    Args:
        request: Room to join
        coordinator: Call coordinator

    Returns:
        Session snapshot after setup

    Raises:
        HTTPException: If a call is already active or setup failed
    """
    try:
        session = await coordinator.start(request.room)
    except CallAlreadyActive as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CallError as e:
        raise HTTPException(status_code=500, detail=f"Call setup failed: {e}")

    if session.state is CallState.FAILED:
        raise HTTPException(status_code=503, detail=f"Call failed: {session.error}")

    logger.info(f"Call started in room {request.room}")
    return _snapshot(session)


@router.post("/hangup", response_model=HangupResponse)
async def api_hangup(
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> HangupResponse:
    """Hang up the active call.

    Raises:
        HTTPException: If no active call
    """
    _require_active(coordinator)
    session = coordinator.hangup()
    return HangupResponse(hung_up=True, session=_snapshot(session))


@router.post("/mute", response_model=SessionResponse)
async def api_mute(
    on: bool = Body(embed=True),
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> SessionResponse:
    """Mute or unmute the microphone.

    Args:
        on: True to mute, False to unmute
        coordinator: Call coordinator

    Returns:
        Session snapshot

    Raises:
        HTTPException: If no active call
    """
    _require_active(coordinator)
    try:
        session = coordinator.set_muted(on)
    except CallError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _snapshot(session)


@router.post("/video", response_model=SessionResponse)
async def api_video(
    off: bool = Body(embed=True),
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> SessionResponse:
    """Turn the camera picture off or on.

    Raises:
        HTTPException: If no active call
    """
    _require_active(coordinator)
    try:
        session = coordinator.set_video_off(off)
    except CallError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _snapshot(session)


@router.post("/screen-share", response_model=SessionResponse)
async def api_screen_share(
    on: bool = Body(embed=True),
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> SessionResponse:
    """Start or stop sharing the screen.

    Raises:
        HTTPException: If no active call or display capture is unavailable
    """
    _require_active(coordinator)
    try:
        if on:
            session = await coordinator.start_screen_share()
        else:
            session = await coordinator.stop_screen_share()
    except ScreenShareUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Screen share unavailable: {e}")
    except CallError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _snapshot(session)


@router.get("/health", response_model=HealthResponse)
async def api_health(
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> HealthResponse:
    """Get call status."""
    session = coordinator.session
    return HealthResponse(
        ok=True,
        active=session.is_active,
        session=_snapshot(session) if session.room_id else None,
    )


@router.post("/invite", response_model=InviteResponse)
async def api_invite(
    request: InviteRequest,
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> InviteResponse:
    """Ring another user and ask them to join a room.

    Raises:
        HTTPException: If the relay cannot be reached
    """
    try:
        await coordinator.invite(request.user_id, request.room, request.caller_name)
    except SignalingUnreachable as e:
        raise HTTPException(status_code=503, detail=f"Relay unreachable: {e}")
    return InviteResponse(invited=True, user_id=request.user_id, room=request.room)


@router.get("/incoming", response_model=PendingCallResponse)
async def api_incoming(
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> PendingCallResponse:
    """Get the call we are being rung for, if any."""
    incoming = coordinator.pending_incoming
    return PendingCallResponse(
        ringing=incoming is not None,
        incoming=_incoming(incoming) if incoming else None,
    )


@router.post("/reject", response_model=RejectResponse)
async def api_reject(
    coordinator: CallCoordinator = Depends(get_call_coordinator_dependency),
) -> RejectResponse:
    """Decline the incoming call.

    Raises:
        HTTPException: If nobody is ringing or the relay is unreachable
    """
    try:
        declined = await coordinator.reject_incoming()
    except SignalingUnreachable as e:
        raise HTTPException(status_code=503, detail=f"Relay unreachable: {e}")
    except CallError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(f"Declined call in room {declined.room_id}")
    return RejectResponse(rejected=True, incoming=_incoming(declined))
