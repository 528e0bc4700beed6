"""Local media acquisition, mute/video toggles and screen-share substitution."""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from ..errors import MediaError, MediaUnavailable, ScreenShareUnavailable
from .media_base import MediaDevices
from .tracks import LocalTrack

logger = logging.getLogger(__name__)

AttachTrack = Callable[[Optional[LocalTrack]], Awaitable[None]]


@dataclass
class LocalMediaHandle:
    """The tracks acquired for one call.

    ``camera`` stays allocated while a screen share is running (it is parked,
    not stopped) so the exact same track object can be sent again afterwards.
    """

    audio: Optional[LocalTrack] = None
    camera: Optional[LocalTrack] = None
    screen: Optional[LocalTrack] = None
    video_unavailable: bool = False
    released: bool = False
    screen_pending: bool = False
    screen_ended_callbacks: List[Callable[[], None]] = field(default_factory=list)

    @property
    def outbound_video(self) -> Optional[LocalTrack]:
        """The single video track currently meant to be sent."""
        return self.screen if self.screen is not None else self.camera

    @property
    def tracks(self) -> List[LocalTrack]:
        return [t for t in (self.audio, self.camera, self.screen) if t is not None]

    @property
    def live_tracks(self) -> List[LocalTrack]:
        return [t for t in self.tracks if t.readyState == "live"]


class MediaController:
    """Acquires and releases the local camera, microphone and screen capture."""

    def __init__(self, devices: MediaDevices):
        """Initialize media controller.

        Args:
            devices: Capture device backend
        """
        self.devices = devices

    async def acquire(self, prefer_video: bool = True) -> LocalMediaHandle:
        """Open microphone and (optionally) camera.

        A camera that cannot be opened is not an error: the call degrades to
        audio-only and ``video_unavailable`` is set on the handle. Only a
        missing microphone is fatal.

        Args:
            prefer_video: Whether to try the camera at all

        Returns:
            Handle owning the acquired tracks

        Raises:
            MediaUnavailable: If the microphone cannot be opened
        """
        handle = LocalMediaHandle()

        if prefer_video:
            try:
                handle.camera = LocalTrack(await self.devices.open_camera(), "camera")
            except Exception as e:
                logger.warning(f"Camera unavailable, continuing audio-only: {e}")
                handle.video_unavailable = True

        try:
            handle.audio = LocalTrack(await self.devices.open_microphone(), "microphone")
        except Exception as e:
            logger.error(f"Microphone unavailable: {e}")
            self.release(handle)
            raise MediaUnavailable(f"microphone unavailable: {e}") from e

        logger.info(
            f"Local media acquired (audio=yes, video={'yes' if handle.camera else 'no'})"
        )
        return handle

    def set_audio_enabled(self, handle: LocalMediaHandle, enabled: bool) -> bool:
        """Mute or unmute the microphone without touching the connection.

        Returns:
            Whether audio is now being sent
        """
        if handle.audio is None or handle.released:
            return False
        handle.audio.enabled = bool(enabled)
        logger.info(f"Microphone {'unmuted' if enabled else 'muted'}")
        return handle.audio.enabled

    def set_video_enabled(self, handle: LocalMediaHandle, enabled: bool) -> bool:
        """Turn the camera picture on or off without touching the connection.

        Only the camera track is affected; a running screen share keeps
        sending.

        Returns:
            Whether camera video is now being sent (always False without a camera)
        """
        if handle.camera is None or handle.released:
            return False
        handle.camera.enabled = bool(enabled)
        logger.info(f"Camera {'on' if enabled else 'off'}")
        return handle.camera.enabled

    async def start_screen_share(
        self, handle: LocalMediaHandle, attach: Optional[AttachTrack] = None
    ) -> LocalTrack:
        """Capture the display and make it the outbound video source.

        Args:
            handle: Media handle of the call
            attach: Puts the new track on the wire; the camera is parked only
                after it returns

        Returns:
            The screen track

        Raises:
            ScreenShareUnavailable: If display capture cannot be started
            MediaError: If a share is already running or starting, or the
                handle was released
        """
        if handle.released:
            raise MediaError("media already released")
        if handle.screen is not None or handle.screen_pending:
            raise MediaError("screen share already running")

        handle.screen_pending = True
        try:
            try:
                source = await self.devices.open_display()
            except Exception as e:
                logger.error(f"Screen share failed: {e}")
                raise ScreenShareUnavailable(str(e)) from e

            screen = LocalTrack(source, "screen")
            if handle.released:
                # call was torn down while the capture was opening
                screen.stop()
                raise MediaError("media released during screen share start")

            if attach is not None:
                try:
                    await attach(screen)
                except Exception:
                    screen.stop()
                    raise
                if handle.released:
                    screen.stop()
                    raise MediaError("media released during screen share start")
        finally:
            handle.screen_pending = False

        handle.screen = screen
        screen.on("ended", lambda: self._on_screen_ended(handle, screen))
        logger.info("Screen share started")
        return screen

    def on_screen_share_ended(self, handle: LocalMediaHandle, callback: Callable[[], None]) -> None:
        """Register a callback for when the operator stops sharing from outside the app."""
        handle.screen_ended_callbacks.append(callback)

    async def stop_screen_share(
        self, handle: LocalMediaHandle, attach: Optional[AttachTrack] = None
    ) -> None:
        """Send the parked camera track again and stop the screen capture.

        Args:
            handle: Media handle of the call
            attach: Puts the camera track back on the wire before the screen
                track is stopped
        """
        screen = handle.screen
        if screen is None:
            return

        if attach is not None and not handle.released:
            await attach(handle.camera)

        handle.screen = None
        screen.stop()
        logger.info("Screen share stopped")

    def release(self, handle: LocalMediaHandle) -> None:
        """Stop every track of ``handle``. Safe to call any number of times."""
        first = not handle.released
        handle.released = True
        handle.screen_ended_callbacks.clear()
        for track in handle.tracks:
            track.stop()
        if first:
            logger.info("Local media released")

    def _on_screen_ended(self, handle: LocalMediaHandle, screen: LocalTrack) -> None:
        if handle.released or handle.screen is not screen:
            return
        logger.info("Screen capture ended by operator")
        for callback in list(handle.screen_ended_callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"Screen share ended callback failed: {e}")
