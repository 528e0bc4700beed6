"""Signaling relay channel interface definition."""

from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class RelayFrame:
    """One event received from the relay."""
    event: str
    data: Any = None


class RelayChannel(Protocol):
    """Protocol for the transport carrying relay events.

    Every (re)connection of the transport must surface a ``connect`` frame
    through ``receive()`` so callers can restore room membership.
    """

    @property
    def connected(self) -> bool:
        """Check if the transport is currently connected."""
        ...

    async def connect(self) -> None:
        """Open the transport.

        Raises:
            SignalingUnreachable: If the relay cannot be reached
        """
        ...

    async def emit(self, event: str, data: Any) -> None:
        """Send one event to the relay."""
        ...

    async def receive(self) -> Optional[RelayFrame]:
        """Wait for the next frame; None once the channel is closed for good."""
        ...

    async def close(self) -> None:
        """Close the transport and stop reconnecting."""
        ...
