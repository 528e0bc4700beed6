"""Pydantic schemas for ICE configuration and API requests and responses."""

from typing import Any, Dict, Optional, List, Union

from pydantic import BaseModel, Field


class IceServer(BaseModel):
    """One ICE server entry: ``{urls, username?, credential?}``."""
    urls: Union[str, List[str]]
    username: Optional[str] = None
    credential: Optional[str] = None

    @property
    def url_list(self) -> List[str]:
        """URLs of this entry as a list."""
        return [self.urls] if isinstance(self.urls, str) else list(self.urls)


class StartCallRequest(BaseModel):
    """Request body for starting a call."""
    room: str = Field(..., min_length=1)


class InviteRequest(BaseModel):
    """Request body for ringing another user."""
    user_id: str = Field(..., min_length=1)
    room: str = Field(..., min_length=1)
    caller_name: Optional[str] = None


class InviteResponse(BaseModel):
    """Response from invite endpoint."""
    invited: bool
    user_id: str
    room: str


class IncomingCallResponse(BaseModel):
    """A call we are being rung for."""
    room_id: str
    caller: Dict[str, Any] = Field(default_factory=dict)


class PendingCallResponse(BaseModel):
    """Response from the incoming call endpoint."""
    ringing: bool
    incoming: Optional[IncomingCallResponse] = None


class RejectResponse(BaseModel):
    """Response from reject endpoint."""
    rejected: bool
    incoming: IncomingCallResponse


class SessionResponse(BaseModel):
    """Snapshot of the local call session."""
    room_id: Optional[str]
    state: str
    role: str
    peer_id: Optional[str] = None
    is_muted: bool
    is_video_off: bool
    is_screen_sharing: bool
    video_unavailable: bool
    end_reason: Optional[str] = None
    error: Optional[str] = None


class HangupResponse(BaseModel):
    """Response from hangup endpoint."""
    hung_up: bool
    session: SessionResponse


class HealthResponse(BaseModel):
    """Response from health endpoint."""
    ok: bool
    active: bool
    session: Optional[SessionResponse] = None
