"""Tests for local media acquisition and screen-share substitution."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from src.peer_call.errors import MediaError, MediaUnavailable, ScreenShareUnavailable
from src.peer_call.services.media_controller import MediaController
from src.peer_call.services.tracks import LocalTrack

from conftest import FakeMediaDevices


class TestMediaController:
    """Test cases for MediaController."""

    @pytest.mark.asyncio
    async def test_acquire_audio_and_video(self):
        controller = MediaController(FakeMediaDevices())

        handle = await controller.acquire(prefer_video=True)

        assert isinstance(handle.audio, LocalTrack)
        assert handle.audio.kind == "audio"
        assert handle.camera.kind == "video"
        assert handle.outbound_video is handle.camera
        assert not handle.video_unavailable
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_acquire_audio_only_by_choice(self):
        devices = FakeMediaDevices()
        controller = MediaController(devices)

        handle = await controller.acquire(prefer_video=False)

        assert handle.camera is None
        assert not handle.video_unavailable
        assert len(devices.opened) == 1
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_camera_failure_falls_back_to_audio(self):
        controller = MediaController(FakeMediaDevices(camera=False))

        handle = await controller.acquire(prefer_video=True)

        assert handle.camera is None
        assert handle.audio is not None
        assert handle.video_unavailable
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_microphone_failure_is_fatal_and_releases_camera(self):
        devices = FakeMediaDevices(microphone=False)
        controller = MediaController(devices)

        with pytest.raises(MediaUnavailable):
            await controller.acquire(prefer_video=True)

        camera_source = devices.opened[0]
        assert camera_source.readyState == "ended"

    @pytest.mark.asyncio
    async def test_toggles_return_effective_state(self):
        controller = MediaController(FakeMediaDevices(camera=False))
        handle = await controller.acquire()

        assert controller.set_audio_enabled(handle, False) is False
        assert handle.audio.enabled is False
        assert controller.set_audio_enabled(handle, True) is True
        # no camera: video can never be on
        assert controller.set_video_enabled(handle, True) is False
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self):
        controller = MediaController(FakeMediaDevices())
        handle = await controller.acquire()

        controller.release(handle)
        controller.release(handle)

        assert handle.released
        assert handle.live_tracks == []
        assert controller.set_audio_enabled(handle, True) is False


class TestScreenShare:
    """Test cases for swapping the outbound video source."""

    @pytest.mark.asyncio
    async def test_start_and_stop_restores_same_camera_track(self):
        controller = MediaController(FakeMediaDevices())
        handle = await controller.acquire()
        camera = handle.camera
        attach = AsyncMock()

        screen = await controller.start_screen_share(handle, attach=attach)

        attach.assert_awaited_once_with(screen)
        assert handle.outbound_video is screen
        assert camera.readyState == "live"

        await controller.stop_screen_share(handle, attach=attach)

        assert attach.await_args.args == (camera,)
        assert handle.screen is None
        assert handle.outbound_video is camera
        assert screen.readyState == "ended"
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_display_denied_keeps_camera(self):
        controller = MediaController(FakeMediaDevices(display=False))
        handle = await controller.acquire()
        attach = AsyncMock()

        with pytest.raises(ScreenShareUnavailable):
            await controller.start_screen_share(handle, attach=attach)

        attach.assert_not_awaited()
        assert handle.screen is None
        assert handle.outbound_video is handle.camera
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_attach_failure_stops_screen_track(self):
        devices = FakeMediaDevices()
        controller = MediaController(devices)
        handle = await controller.acquire()
        attach = AsyncMock(side_effect=RuntimeError("sender gone"))

        with pytest.raises(RuntimeError):
            await controller.start_screen_share(handle, attach=attach)

        assert handle.screen is None
        assert devices.opened[-1].readyState == "ended"
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_second_share_rejected(self):
        controller = MediaController(FakeMediaDevices())
        handle = await controller.acquire()
        await controller.start_screen_share(handle)

        with pytest.raises(MediaError):
            await controller.start_screen_share(handle)
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_share_requested_while_one_is_starting(self):
        devices = FakeMediaDevices()
        controller = MediaController(devices)
        handle = await controller.acquire()
        gate = asyncio.Event()
        open_display = devices.open_display

        async def slow_display():
            await gate.wait()
            return await open_display()

        devices.open_display = slow_display
        first = asyncio.create_task(controller.start_screen_share(handle))
        await asyncio.sleep(0)

        with pytest.raises(MediaError):
            await controller.start_screen_share(handle)

        gate.set()
        screen = await first
        assert handle.screen is screen
        assert not handle.screen_pending

        controller.release(handle)
        assert [track for track in devices.opened if track.readyState == "live"] == []

    @pytest.mark.asyncio
    async def test_release_while_share_attaching_stops_screen(self):
        devices = FakeMediaDevices()
        controller = MediaController(devices)
        handle = await controller.acquire()

        async def attach(track):
            controller.release(handle)

        with pytest.raises(MediaError):
            await controller.start_screen_share(handle, attach=attach)

        assert handle.screen is None
        assert devices.opened[-1].readyState == "ended"

    @pytest.mark.asyncio
    async def test_operator_ending_capture_fires_callback(self):
        devices = FakeMediaDevices()
        controller = MediaController(devices)
        handle = await controller.acquire()
        ended = []
        controller.on_screen_share_ended(handle, lambda: ended.append(True))
        await controller.start_screen_share(handle)

        # the capture source ends outside the app
        devices.opened[-1].stop()

        assert ended == [True]
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_app_stopping_share_does_not_fire_callback(self):
        controller = MediaController(FakeMediaDevices())
        handle = await controller.acquire()
        ended = []
        controller.on_screen_share_ended(handle, lambda: ended.append(True))
        await controller.start_screen_share(handle)

        await controller.stop_screen_share(handle)

        assert ended == []
        controller.release(handle)

    @pytest.mark.asyncio
    async def test_release_stops_screen_and_camera(self):
        controller = MediaController(FakeMediaDevices())
        handle = await controller.acquire()
        screen = await controller.start_screen_share(handle)

        controller.release(handle)

        assert screen.readyState == "ended"
        assert handle.camera.readyState == "ended"
        assert handle.audio.readyState == "ended"
