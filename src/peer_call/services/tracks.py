"""Outbound track wrapper with a browser-style ``enabled`` switch.

aiortc tracks have no ``enabled`` attribute, so muting a sender would normally
mean removing its track and renegotiating. ``LocalTrack`` keeps pulling frames
from the capture source and, while disabled, sends silence or blank video of
the same shape instead. The RTP stream never stops, so nothing has to be
renegotiated.
"""

import logging
from typing import Optional

from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


class LocalTrack(MediaStreamTrack):
    """Wraps a capture track and blanks its frames while disabled.

    Attributes:
        source (MediaStreamTrack): Capture track frames are read from
        label (str): Human readable name used in logs ("camera", "screen", ...)
        enabled (bool): When False, frames are replaced with silence/blank video
    """

    def __init__(self, source: MediaStreamTrack, label: Optional[str] = None):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.label = label or source.kind
        self.enabled = True

        # Capture ended on its own (device unplugged, operator closed the share)
        source.on("ended", self._on_source_ended)

    async def recv(self):
        if self.readyState != "live":
            raise MediaStreamError

        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return _silence_like(frame)
        return _blank_like(frame)

    def stop(self) -> None:
        """Stop the wrapper and the underlying capture track."""
        if self.readyState == "live":
            logger.debug(f"Stopping {self.label} track {self.id}")
        super().stop()
        if self.source.readyState == "live":
            self.source.stop()

    def _on_source_ended(self) -> None:
        if self.readyState == "live":
            logger.info(f"{self.label} capture ended")
            self.stop()


def _silence_like(frame: AudioFrame) -> AudioFrame:
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    silent.time_base = frame.time_base
    return silent


def _blank_like(frame: VideoFrame) -> VideoFrame:
    # black in yuv420p: zero luma, neutral chroma
    blank = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
    for index, plane in enumerate(blank.planes):
        plane.update((b"\x00" if index == 0 else b"\x80") * plane.buffer_size)
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank
