"""Test configuration for pytest."""

import asyncio
import functools
from typing import Any, Dict, List, Optional

import pytest
from aiortc import AudioStreamTrack, RTCSessionDescription, VideoStreamTrack
from pyee.asyncio import AsyncIOEventEmitter

from src.peer_call.errors import SignalingUnreachable
from src.peer_call.services.call_coordinator import CallCoordinator
from src.peer_call.services.media_controller import MediaController
from src.peer_call.services.peer_session import PeerSession
from src.peer_call.services.relay_base import RelayFrame
from src.peer_call.services.relay_hub import RelayHub
from src.peer_call.services.signaling_client import SignalingClient
from src.peer_call.settings import Settings


class FakeMediaDevices:
    """Capture devices producing synthetic aiortc tracks."""

    def __init__(self, camera=True, microphone=True, display=True):
        self.camera = camera
        self.microphone = microphone
        self.display = display
        self.opened: List[Any] = []

    async def open_microphone(self):
        if not self.microphone:
            raise OSError("no microphone")
        return self._keep(AudioStreamTrack())

    async def open_camera(self):
        if not self.camera:
            raise OSError("no camera")
        return self._keep(VideoStreamTrack())

    async def open_display(self):
        if not self.display:
            raise PermissionError("display capture denied")
        return self._keep(VideoStreamTrack())

    def _keep(self, track):
        self.opened.append(track)
        return track


class FakeSender:
    def __init__(self, track=None):
        self.track = track
        self.replaced: List[Any] = []

    async def replaceTrack(self, track):
        self.replaced.append(track)
        self.track = track


class FakeTransceiver:
    def __init__(self, kind, direction):
        self.kind = kind
        self.direction = direction
        self.sender = FakeSender()


class FakePeerConnection(AsyncIOEventEmitter):
    """Stands in for ``RTCPeerConnection`` without any networking.

    Applying a remote description emits a remote ``track`` event, as aiortc
    does while parsing the remote SDP.
    """

    def __init__(self, configuration=None):
        super().__init__()
        self.configuration = configuration
        self.signalingState = "stable"
        self.connectionState = "new"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.senders: List[FakeSender] = []
        self.transceivers: List[FakeTransceiver] = []
        self.candidates: List[Any] = []
        self.closed = False

    def addTrack(self, track):
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    def addTransceiver(self, kind, direction="sendrecv"):
        transceiver = FakeTransceiver(kind, direction)
        self.transceivers.append(transceiver)
        self.senders.append(transceiver.sender)
        return transceiver

    async def createOffer(self):
        return RTCSessionDescription(sdp=f"v=0 offer {id(self)}", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp=f"v=0 answer {id(self)}", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description
        self.signalingState = "have-local-offer" if description.type == "offer" else "stable"

    async def setRemoteDescription(self, description):
        self.remoteDescription = description
        self.signalingState = "have-remote-offer" if description.type == "offer" else "stable"
        self.emit("track", VideoStreamTrack())

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True
        self.connectionState = "closed"
        self.signalingState = "closed"

    def fail(self):
        """Simulate ICE failure after negotiation."""
        self.connectionState = "failed"
        self.emit("connectionstatechange")


class HubRelayChannel:
    """In-memory relay channel talking directly to a ``RelayHub``."""

    def __init__(self, hub: RelayHub, user_id: Optional[str] = None, reachable: bool = True):
        self.hub = hub
        self.user_id = user_id
        self.reachable = reachable
        self.sid: Optional[str] = None
        self.emitted: List[tuple] = []
        self._frames: asyncio.Queue = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self.sid is not None

    async def connect(self) -> None:
        if not self.reachable:
            raise SignalingUnreachable("relay down")
        if self.sid is None:
            self.sid = await self.hub.register(self._deliver, user_id=self.user_id)

    async def emit(self, event: str, data: Any) -> None:
        if self.sid is None:
            raise SignalingUnreachable("not connected")
        self.emitted.append((event, data))
        await self.hub.handle(self.sid, event, data)

    async def receive(self) -> Optional[RelayFrame]:
        return await self._frames.get()

    async def close(self) -> None:
        if self.sid is not None:
            self.hub.unregister(self.sid)
            self.sid = None
        await self._frames.put(None)

    async def _deliver(self, message: Dict[str, Any]) -> None:
        await self._frames.put(RelayFrame(event=message["event"], data=message["data"]))


def fake_peer_factory(connections: List[FakePeerConnection]):
    """PeerSession factory recording every fake connection it creates."""

    def make_pc(configuration):
        pc = FakePeerConnection(configuration)
        connections.append(pc)
        return pc

    return functools.partial(PeerSession, pc_factory=make_pc)


class CallHarness:
    """A coordinator wired to fake devices, a hub channel and fake connections."""

    def __init__(self, hub: RelayHub, settings: Settings, user_id: Optional[str] = None, **device_options):
        self.devices = FakeMediaDevices(**device_options)
        self.channel = HubRelayChannel(hub, user_id=user_id)
        self.signaling = SignalingClient(self.channel)
        self.connections: List[FakePeerConnection] = []
        self.states: List[str] = []
        self.errors: List[Exception] = []
        self.incoming: List[Any] = []
        self.coordinator = CallCoordinator(
            media=MediaController(self.devices),
            signaling=self.signaling,
            settings=settings,
            peer_factory=fake_peer_factory(self.connections),
            on_state_change=lambda session: self.states.append(session.state.value),
            on_error=self.errors.append,
            on_incoming_call=self.incoming.append,
        )

    @property
    def session(self):
        return self.coordinator.session

    async def shutdown(self):
        await self.coordinator.close()
        await self.signaling.close()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def test_settings():
    """Settings with no environment or .env influence."""
    return Settings(
        _env_file=None,
        RELAY_URL="ws://relay.test/relay",
        NEGOTIATION_TIMEOUT=5.0,
        SIGNALING_CONNECT_TIMEOUT=1.0,
    )


@pytest.fixture
def relay_hub():
    return RelayHub()


@pytest.fixture
def make_call(relay_hub, test_settings):
    """Factory for call harnesses sharing one relay hub."""

    def factory(settings: Optional[Settings] = None, user_id: Optional[str] = None, **device_options) -> CallHarness:
        return CallHarness(relay_hub, settings or test_settings, user_id=user_id, **device_options)

    return factory
