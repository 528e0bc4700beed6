"""Capture devices backed by aiortc's ffmpeg ``MediaPlayer``."""

import asyncio
import logging
from typing import Dict, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from ..errors import MediaError
from ..settings import Settings

logger = logging.getLogger(__name__)


class PlayerMediaDevices:
    """Opens camera, microphone and display through ffmpeg input devices.

    Device names and ffmpeg input formats come from settings, e.g.
    ``/dev/video0`` + ``v4l2`` for a Linux camera, ``default`` + ``pulse``
    for the microphone and ``:0.0`` + ``x11grab`` for the screen.
    """

    def __init__(self, settings: Settings):
        """Initialize capture devices.

        Args:
            settings: Application settings with device configuration
        """
        self.settings = settings

    async def open_microphone(self) -> MediaStreamTrack:
        player = await self._open(
            self.settings.microphone_device, self.settings.microphone_format, {}
        )
        return self._take(player, "audio", "microphone")

    async def open_camera(self) -> MediaStreamTrack:
        player = await self._open(
            self.settings.camera_device, self.settings.camera_format, self._video_options()
        )
        return self._take(player, "video", "camera")

    async def open_display(self) -> MediaStreamTrack:
        player = await self._open(
            self.settings.display_device, self.settings.display_format, self._video_options()
        )
        return self._take(player, "video", "display")

    def _video_options(self) -> Dict[str, str]:
        return {
            "framerate": str(self.settings.video_framerate),
            "video_size": self.settings.video_size,
        }

    async def _open(self, device: str, fmt: Optional[str], options: Dict[str, str]) -> MediaPlayer:
        """Open an ffmpeg input off the event loop (device probing blocks)."""
        logger.info(f"Opening capture device {device} (format={fmt}, options={options})")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, lambda: MediaPlayer(device, format=fmt, options=options)
            )
        except Exception as e:
            raise MediaError(f"cannot open {device}: {e}") from e

    @staticmethod
    def _take(player: MediaPlayer, kind: str, label: str) -> MediaStreamTrack:
        track = player.audio if kind == "audio" else player.video
        if track is None:
            raise MediaError(f"{label} device has no {kind} stream")
        return track
