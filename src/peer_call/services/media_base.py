"""Local capture device interface definition."""

from typing import Protocol

from aiortc import MediaStreamTrack


class MediaDevices(Protocol):
    """Protocol for opening local capture tracks.

    Each method opens a fresh capture and returns a live track, or raises if
    the device is missing or access is denied.
    """

    async def open_microphone(self) -> MediaStreamTrack:
        """Open the microphone and return its audio track."""
        ...

    async def open_camera(self) -> MediaStreamTrack:
        """Open the camera and return its video track."""
        ...

    async def open_display(self) -> MediaStreamTrack:
        """Start display capture and return its video track."""
        ...
