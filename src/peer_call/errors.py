"""Exceptions raised by the call subsystem."""


class CallError(Exception):
    """Base class for call subsystem errors."""
    pass


class MediaError(CallError):
    """Local media could not be acquired or manipulated."""
    pass


class MediaUnavailable(MediaError):
    """Raised when neither camera nor microphone can be opened."""
    pass


class ScreenShareUnavailable(MediaError):
    """Raised when display capture cannot be started."""
    pass


class SignalingUnreachable(CallError):
    """Raised when the signaling relay cannot be reached."""
    pass


class NegotiationTimeout(CallError):
    """Raised when a call never reaches the connected state in time."""
    pass


class PeerConnectionFailed(CallError):
    """Raised when the peer connection fails after negotiation."""
    pass


class CallAlreadyActive(CallError):
    """Raised when a call is started while another one is still live."""
    pass


class InvalidTransition(CallError):
    """Raised on a state change the call state machine does not allow."""
    pass
