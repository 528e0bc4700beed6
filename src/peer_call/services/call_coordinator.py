"""Call coordinator: drives media, signaling and the peer session through a call.

State machine::

    Idle -> Requesting -> Waiting -> Negotiating -> Connected -> Ended
                 |            |            |             |
                 +------------+------------+-------------+--> Failed

Entering Ended or Failed always releases local media, synchronously, before
anything else happens; closing the peer connection, telling the peer and
leaving the room are scheduled right after.

Relay events are read by one long-lived dispatcher. Incoming calls are
handled whether or not a call is running; everything else is handed to the
event pump of the current call, or dropped while idle.
"""

import asyncio
import contextlib
import logging
from typing import Callable, List, Optional, Set

from ..errors import (
    CallAlreadyActive,
    CallError,
    MediaUnavailable,
    NegotiationTimeout,
    PeerConnectionFailed,
    SignalingUnreachable,
)
from ..models import state
from ..models.signals import (
    CallEnded,
    CallRejected,
    IncomingCall,
    PeerJoined,
    SignalEnvelope,
    SignalingEvent,
    SignalKind,
    SignalReceived,
)
from ..models.state import CallRole, CallSession, CallState
from ..settings import Settings
from .ice import build_rtc_configuration, resolve_ice_servers
from .media_controller import LocalMediaHandle, MediaController
from .peer_session import PeerSession
from .signaling_client import SignalingClient
from .tracks import LocalTrack

logger = logging.getLogger(__name__)

StateCallback = Callable[[CallSession], None]
ErrorCallback = Callable[[CallError], None]
IncomingCallback = Callable[[IncomingCall], None]


class CallCoordinator:
    """Runs one call at a time on top of the media, signaling and peer layers.

    The coordinator exclusively owns the ``LocalMediaHandle`` and the
    ``PeerSession`` of the current call; nothing else touches tracks or the
    connection directly.
    """

    def __init__(
        self,
        media: MediaController,
        signaling: SignalingClient,
        settings: Settings,
        peer_factory: Callable[..., PeerSession] = PeerSession,
        on_state_change: Optional[StateCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_incoming_call: Optional[IncomingCallback] = None,
    ):
        """Initialize call coordinator.

        Args:
            media: Local media controller
            signaling: Signaling client (connected by ``listen()`` or the first call)
            settings: Application settings (ICE, timeouts, video preference)
            peer_factory: Creates the peer session for a call
            on_state_change: Called with every new session value
            on_error: Called once with the error that failed a call
            on_incoming_call: Called when another user rings us
        """
        self.media = media
        self.signaling = signaling
        self.settings = settings
        self.peer_factory = peer_factory
        self.on_state_change = on_state_change
        self.on_error = on_error
        self.on_incoming_call = on_incoming_call

        self._session = CallSession()
        self._local_media: Optional[LocalMediaHandle] = None
        self._peer: Optional[PeerSession] = None
        self._rtc_config = None
        self._joined_room: Optional[str] = None
        self._pending_incoming: Optional[IncomingCall] = None

        # bumped by every start(); a setup step only acts while it still matches
        self._generation = 0
        self._call_events: asyncio.Queue = asyncio.Queue()
        self._media_ready = asyncio.Event()
        self._setup_done = asyncio.Event()
        self._setup_done.set()
        self._closed = asyncio.Event()
        self._closed.set()
        self._dispatcher: Optional[asyncio.Task] = None
        self._pump: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def session(self) -> CallSession:
        return self._session

    @property
    def local_media(self) -> Optional[LocalMediaHandle]:
        return self._local_media

    @property
    def peer(self) -> Optional[PeerSession]:
        return self._peer

    @property
    def pending_incoming(self) -> Optional[IncomingCall]:
        """The last call we were rung for and have neither accepted nor rejected."""
        return self._pending_incoming

    # -- lifecycle -----------------------------------------------------

    async def listen(self) -> None:
        """Connect to the relay and start dispatching its events.

        Safe to call repeatedly. Needed before anyone can ring us while no
        call is running; ``start()`` and ``invite()`` call it themselves.

        Raises:
            SignalingUnreachable: If the relay cannot be reached
        """
        await self.signaling.connect()
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch_events())

    async def start(self, room_id: str) -> CallSession:
        """Enter ``room_id``: acquire media, join the room and wait for the peer.

        Media and signaling failures do not raise; they put the session into
        Failed and are reported once through ``on_error`` and the returned
        session's ``error``. Accepting an incoming call is starting a call
        in its room.

        Args:
            room_id: Call room to join

        Returns:
            The session after setup (Waiting on success)

        Raises:
            CallAlreadyActive: If a call is still running on this coordinator
        """
        if self._session.is_active:
            raise CallAlreadyActive(f"call in room {self._session.room_id} is still {self._session.state.value}")

        # the previous call may still be tearing down
        await self._closed.wait()
        if self._session.is_active:
            raise CallAlreadyActive(f"call in room {self._session.room_id} started meanwhile")

        self._reset()
        self._generation += 1
        generation = self._generation
        setup_done = self._setup_done
        self._pending_incoming = None
        self._set(state.begin(room_id))
        logger.info(f"Starting call in room {room_id}")

        self._pump = self._spawn(self._event_pump(self._call_events))

        try:
            return await self._set_up(room_id, generation)
        except Exception as e:
            if self._owns(generation):
                logger.error(f"Call setup failed: {e}")
                self._fail(e if isinstance(e, CallError) else CallError(f"call setup failed: {e}"))
            raise
        finally:
            setup_done.set()

    async def _set_up(self, room_id: str, generation: int) -> CallSession:
        servers = await resolve_ice_servers(self.settings)
        if not self._owns(generation):
            # hung up before any media was opened
            return self._session
        self._rtc_config = build_rtc_configuration(servers)

        try:
            handle = await self.media.acquire(self.settings.prefer_video)
        except MediaUnavailable as e:
            if self._owns(generation):
                self._fail(e, "media-unavailable")
            return self._session

        if not self._owns(generation):
            # hung up while media was being acquired
            self.media.release(handle)
            return self._session

        self._local_media = handle
        self.media.on_screen_share_ended(handle, self._on_operator_stopped_sharing)
        self._set(
            state.media_ready(self._session, handle.video_unavailable, handle.camera is not None)
        )
        self._media_ready.set()

        try:
            await self.listen()
            await self.signaling.join_room(room_id)
            self._joined_room = room_id
        except SignalingUnreachable as e:
            if self._owns(generation):
                self._fail(e, "signaling-unreachable")
            return self._session

        if self._owns(generation):
            self._start_watchdog()
        return self._session

    def hangup(self) -> CallSession:
        """End the call now and tell the peer.

        Returns immediately with the Ended session; closing the connection,
        sending ``call:ended`` and leaving the room continue in the background.
        """
        if not self._session.is_active:
            return self._session
        logger.info(f"Hanging up call in room {self._session.room_id}")
        self._end("hangup", notify_peer=True)
        return self._session

    async def wait_closed(self) -> None:
        """Wait until the last call's setup and background cleanup have finished."""
        await self._closed.wait()

    async def close(self) -> None:
        """Hang up, wait for cleanup and stop dispatching relay events."""
        self.hangup()
        await self.wait_closed()
        dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is not None:
            dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await dispatcher

    # -- ringing -------------------------------------------------------

    async def invite(self, user_id: str, room_id: str, caller_name: Optional[str] = None) -> None:
        """Ring ``user_id`` and ask them to join ``room_id``.

        Raises:
            SignalingUnreachable: If the relay cannot be reached
        """
        await self.listen()
        await self.signaling.invite(user_id, room_id, caller_name)

    async def reject_incoming(self) -> IncomingCall:
        """Decline the pending incoming call.

        Returns:
            The call that was declined

        Raises:
            CallError: If nobody is ringing
            SignalingUnreachable: If the relay is not connected
        """
        incoming = self._pending_incoming
        if incoming is None:
            raise CallError("no incoming call")
        await self.signaling.reject(incoming.room_id)
        if self._pending_incoming is incoming:
            self._pending_incoming = None
        return incoming

    # -- media controls ------------------------------------------------

    def set_muted(self, muted: bool) -> CallSession:
        handle = self._require_media()
        enabled = self.media.set_audio_enabled(handle, not muted)
        self._set(state.with_flags(self._session, is_muted=not enabled))
        return self._session

    def set_video_off(self, off: bool) -> CallSession:
        handle = self._require_media()
        enabled = self.media.set_video_enabled(handle, not off)
        self._set(state.with_flags(self._session, is_video_off=not enabled))
        return self._session

    async def start_screen_share(self) -> CallSession:
        """Send the screen instead of the camera.

        Raises:
            ScreenShareUnavailable: If display capture fails (call state unchanged)
            MediaError: If another screen share is still starting
        """
        handle = self._require_media()
        if handle.screen is not None:
            return self._session

        await self.media.start_screen_share(handle, attach=self._attach_video)
        self._set(state.with_flags(self._session, is_screen_sharing=True))
        return self._session

    async def stop_screen_share(self) -> CallSession:
        """Send the camera again (the same track that was parked)."""
        handle = self._require_media()
        await self.media.stop_screen_share(handle, attach=self._attach_video)
        if not self._session.state.is_terminal:
            self._set(state.with_flags(self._session, is_screen_sharing=False))
        return self._session

    # -- signaling events ----------------------------------------------

    async def _dispatch_events(self) -> None:
        while True:
            event = await self.signaling.next_event()
            if isinstance(event, IncomingCall):
                self._on_incoming_call(event)
            elif self._session.is_active:
                self._call_events.put_nowait(event)
            else:
                logger.debug(f"No call running, dropping {type(event).__name__}")

    def _on_incoming_call(self, event: IncomingCall) -> None:
        if self._session.is_active and event.room_id == self._session.room_id:
            logger.debug(f"Already in room {event.room_id}, ignoring ring")
            return
        caller = event.caller.get("name") or event.caller.get("id") or "unknown caller"
        logger.debug(f"Ringing: {caller} for room {event.room_id}")
        self._pending_incoming = event
        if self.on_incoming_call:
            try:
                self.on_incoming_call(event)
            except Exception as e:
                logger.error(f"Incoming call callback failed: {e}")

    async def _event_pump(self, events: asyncio.Queue) -> None:
        while not self._session.state.is_terminal:
            event = await events.get()
            try:
                await self._handle_event(event)
            except CallError as e:
                self._fail(e)
            except Exception as e:
                logger.error(f"Error handling {type(event).__name__}: {e}")
                self._fail(CallError(f"negotiation failed: {e}"), "negotiation-error")

    async def _handle_event(self, event: SignalingEvent) -> None:
        if isinstance(event, (CallEnded, CallRejected)):
            if event.room_id not in (None, self._session.room_id):
                logger.debug(f"Ignoring {type(event).__name__} for room {event.room_id}")
                return
            reason = "remote-rejected" if isinstance(event, CallRejected) else "remote-ended"
            logger.info(f"Call in room {self._session.room_id} ended by peer ({reason})")
            self._end(reason)
        elif isinstance(event, PeerJoined):
            await self._on_peer_joined(event)
        elif isinstance(event, SignalReceived):
            await self._on_signal(event)

    async def _on_peer_joined(self, event: PeerJoined) -> None:
        if not await self._wait_for_media():
            return
        if self._session.state is not CallState.WAITING:
            logger.warning(f"Peer {event.peer_id} joined while {self._session.state.value}; ignored")
            return

        logger.info(f"Peer {event.peer_id} joined, acting as initiator")
        peer = self._new_peer(event.peer_id)
        self._set(state.assign_role(self._session, CallRole.INITIATOR, event.peer_id))
        offer = await peer.create_as_initiator(self._local_media)
        await self._send_if_live(offer)

    async def _on_signal(self, event: SignalReceived) -> None:
        envelope = event.to_envelope(room_id=self._session.room_id)
        if envelope is None:
            logger.debug(f"Ignoring unrecognised signal from {event.from_}")
            return

        if envelope.kind is SignalKind.OFFER and self._peer is None:
            if not await self._wait_for_media():
                return
            if self._session.state is not CallState.WAITING:
                logger.debug(f"Dropping offer from {event.from_} in {self._session.state.value}")
                return
            logger.info(f"Offer from {event.from_}, acting as responder")
            peer = self._new_peer(event.from_)
            self._set(state.assign_role(self._session, CallRole.RESPONDER, event.from_))
            answer = await peer.create_as_responder(self._local_media, envelope.payload)
            await self._send_if_live(answer)
            return

        if self._peer is None:
            logger.debug(f"Dropping {envelope.kind.value} from {event.from_}: no peer session")
            return

        reply = await self._peer.apply_remote_signal(envelope, self._local_media)
        if reply is not None:
            await self._send_if_live(reply)

    async def _wait_for_media(self) -> bool:
        """Block until media is ready; False if the call ended meanwhile."""
        await self._media_ready.wait()
        return not self._session.state.is_terminal

    async def _send_if_live(self, envelope: SignalEnvelope) -> None:
        if self._session.state.is_terminal:
            logger.debug(f"Not sending {envelope.kind.value}: call already over")
            return
        await self.signaling.send(envelope)

    # -- peer session --------------------------------------------------

    def _new_peer(self, peer_id: str) -> PeerSession:
        peer = self.peer_factory(
            room_id=self._session.room_id,
            peer_id=peer_id,
            local_id=self.signaling.local_id,
            configuration=self._rtc_config,
        )
        peer.on_remote_stream(lambda tracks: self._on_remote_stream(peer, tracks))
        peer.on_connection_failed(lambda: self._on_connection_failed(peer))
        self._peer = peer
        return peer

    def _on_remote_stream(self, peer: PeerSession, tracks: List) -> None:
        if peer is not self._peer or self._session.state is not CallState.NEGOTIATING:
            return
        logger.info(f"Remote stream from {peer.peer_id} ({len(tracks)} track(s)), call connected")
        self._cancel_watchdog()
        self._set(state.connected(self._session))

    def _on_connection_failed(self, peer: PeerSession) -> None:
        if peer is not self._peer:
            return
        logger.error(f"Connection to peer {peer.peer_id} failed")
        self._fail(PeerConnectionFailed(f"connection to {peer.peer_id} failed"), "ice-failed")

    async def _attach_video(self, track: Optional[LocalTrack]) -> None:
        if self._peer is not None:
            await self._peer.replace_outbound_video_track(track)

    def _on_operator_stopped_sharing(self) -> None:
        if self._session.is_active:
            self._spawn(self._revert_to_camera())

    async def _revert_to_camera(self) -> None:
        try:
            await self.stop_screen_share()
        except Exception as e:
            logger.error(f"Could not switch back to camera: {e}")

    # -- transitions ---------------------------------------------------

    def _set(self, session: CallSession) -> None:
        previous = self._session
        self._session = session
        if session.state is not previous.state:
            logger.info(f"Call state {previous.state.value} -> {session.state.value}")
        if self.on_state_change and session != previous:
            try:
                self.on_state_change(session)
            except Exception as e:
                logger.error(f"State change callback failed: {e}")

    def _end(self, reason: str, notify_peer: bool = False) -> None:
        if self._session.state.is_terminal:
            return
        self._set(state.end(self._session, reason))
        self._on_terminal(notify_peer)

    def _fail(self, error: CallError, reason: Optional[str] = None) -> None:
        if self._session.state.is_terminal:
            return
        logger.error(f"Call failed: {error}")
        self._set(state.fail(self._session, error, reason))
        self._on_terminal(notify_peer=False)
        if self.on_error:
            try:
                self.on_error(error)
            except Exception as e:
                logger.error(f"Error callback failed: {e}")

    def _on_terminal(self, notify_peer: bool) -> None:
        self._cancel_watchdog()
        self._media_ready.set()
        if self._local_media is not None:
            self.media.release(self._local_media)
        self._spawn(
            self._cleanup(
                self._peer, self._session.room_id, notify_peer, self._pump, self._setup_done, self._closed
            )
        )

    async def _cleanup(
        self,
        peer: Optional[PeerSession],
        room_id: str,
        notify_peer: bool,
        pump: Optional[asyncio.Task],
        setup_done: asyncio.Event,
        closed: asyncio.Event,
    ) -> None:
        try:
            # start() may still be opening media or joining the room
            await setup_done.wait()
            if notify_peer and self._joined_room is not None:
                try:
                    await self.signaling.send(SignalEnvelope(kind=SignalKind.CALL_ENDED, room_id=room_id))
                except Exception as e:
                    logger.warning(f"Could not notify peer of hangup: {e}")
            if peer is not None:
                try:
                    await peer.close()
                except Exception as e:
                    logger.error(f"Error closing peer connection: {e}")
            await self._leave_room()
        finally:
            if pump is not None and pump is not asyncio.current_task() and not pump.done():
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
            closed.set()
            logger.info(f"Call in room {room_id} cleaned up")

    async def _leave_room(self) -> None:
        room_id, self._joined_room = self._joined_room, None
        if room_id is None:
            return
        try:
            await self.signaling.leave_room(room_id)
        except Exception as e:
            logger.warning(f"Could not leave room {room_id}: {e}")

    # -- helpers -------------------------------------------------------

    def _start_watchdog(self) -> None:
        timeout = self.settings.negotiation_timeout
        if timeout > 0:
            self._watchdog = self._spawn(self._negotiation_watchdog(timeout))

    async def _negotiation_watchdog(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self._session.state in (CallState.WAITING, CallState.NEGOTIATING):
            self._fail(NegotiationTimeout(f"no peer connected within {timeout:g}s"), "timeout")

    def _cancel_watchdog(self) -> None:
        watchdog, self._watchdog = self._watchdog, None
        if watchdog is not None and watchdog is not asyncio.current_task():
            watchdog.cancel()

    def _owns(self, generation: int) -> bool:
        """True while the call started as ``generation`` is current and live."""
        return generation == self._generation and not self._session.state.is_terminal

    def _require_media(self) -> LocalMediaHandle:
        if not self._session.is_active or self._local_media is None:
            raise CallError("no active call with local media")
        return self._local_media

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _reset(self) -> None:
        self._session = CallSession()
        self._local_media = None
        self._peer = None
        self._rtc_config = None
        self._joined_room = None
        self._call_events = asyncio.Queue()
        self._media_ready = asyncio.Event()
        self._setup_done = asyncio.Event()
        self._closed = asyncio.Event()
        self._pump = None
        self._watchdog = None
