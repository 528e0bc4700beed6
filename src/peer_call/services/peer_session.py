"""One peer connection for one call.

``PeerSession`` owns exactly one ``RTCPeerConnection``, plays either the
initiator (offer) or responder (answer) side, and swaps the outbound video
track in place for screen sharing.

Candidates are not trickled: aiortc finishes ICE gathering inside
``setLocalDescription``, so the offer or answer that leaves this class
already carries every local candidate. Candidate messages from a remote
that does trickle are still applied.

WebRTC Flow:
    Initiator: create_as_initiator() -> Offer ... apply_remote_signal(Answer)
    Responder: create_as_responder(Offer) -> Answer
    Either side: on_remote_stream() fires once the first remote track arrives
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from aiortc import MediaStreamTrack, RTCConfiguration, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from ..models.signals import SignalEnvelope, SignalKind
from ..models.state import CallRole
from .media_controller import LocalMediaHandle

logger = logging.getLogger(__name__)

PeerConnectionFactory = Callable[[RTCConfiguration], RTCPeerConnection]
RemoteStreamCallback = Callable[[List[MediaStreamTrack]], None]


def _default_factory(configuration: RTCConfiguration) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=configuration)


class PeerSession:
    """Manages the peer connection to one remote peer in one room.

    Attributes:
        room_id (str): Room the call belongs to
        peer_id (str): Relay id of the remote peer
        local_id (Optional[str]): Our relay id, sent as ``from``
        role (CallRole): Initiator or responder once negotiation began
        pc (Optional[RTCPeerConnection]): The connection, created lazily
        remote_tracks (List[MediaStreamTrack]): Tracks received from the peer
    """

    def __init__(
        self,
        room_id: str,
        peer_id: str,
        local_id: Optional[str] = None,
        configuration: Optional[RTCConfiguration] = None,
        pc_factory: Optional[PeerConnectionFactory] = None,
    ):
        self.room_id = room_id
        self.peer_id = peer_id
        self.local_id = local_id
        self.configuration = configuration or RTCConfiguration()
        self._pc_factory = pc_factory or _default_factory

        self.role = CallRole.UNKNOWN
        self.pc: Optional[RTCPeerConnection] = None
        self.closed = False
        self.remote_tracks: List[MediaStreamTrack] = []

        self._video_sender = None
        self._remote_stream_fired = False
        self._remote_stream_callbacks: List[RemoteStreamCallback] = []
        self._failed_callbacks: List[Callable[[], None]] = []

    # -- callbacks -----------------------------------------------------

    def on_remote_stream(self, callback: RemoteStreamCallback) -> None:
        """Register a callback fired once when the peer's media arrives."""
        self._remote_stream_callbacks.append(callback)
        if self._remote_stream_fired:
            callback(list(self.remote_tracks))

    def on_connection_failed(self, callback: Callable[[], None]) -> None:
        """Register a callback fired if the connection fails after negotiation."""
        self._failed_callbacks.append(callback)

    # -- negotiation ---------------------------------------------------

    async def create_as_initiator(self, local_media: LocalMediaHandle) -> SignalEnvelope:
        """Create the connection and produce our offer.

        Args:
            local_media: Tracks to send

        Returns:
            Offer envelope addressed to the remote peer
        """
        pc = self._create_connection(local_media, CallRole.INITIATOR)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        logger.info(f"Created offer for peer {self.peer_id} in room {self.room_id}")
        return self._envelope(SignalKind.OFFER, self._description(pc))

    async def create_as_responder(
        self, local_media: LocalMediaHandle, incoming_offer: Dict[str, Any]
    ) -> SignalEnvelope:
        """Create the connection from the remote offer and produce our answer.

        Args:
            local_media: Tracks to send
            incoming_offer: Offer payload ``{"type": "offer", "sdp": ...}``

        Returns:
            Answer envelope addressed to the remote peer
        """
        pc = self._create_connection(local_media, CallRole.RESPONDER)

        await pc.setRemoteDescription(
            RTCSessionDescription(sdp=incoming_offer["sdp"], type="offer")
        )
        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)
        logger.info(f"Created answer for peer {self.peer_id} in room {self.room_id}")
        return self._envelope(SignalKind.ANSWER, self._description(pc))

    async def apply_remote_signal(
        self, envelope: SignalEnvelope, local_media: Optional[LocalMediaHandle] = None
    ) -> Optional[SignalEnvelope]:
        """Feed a remote offer, answer or candidate into the connection.

        Signals for a closed session, another room or another peer are
        dropped without error.

        Args:
            envelope: Incoming signal
            local_media: Needed only when an offer creates the connection

        Returns:
            Answer envelope when the signal was an offer, otherwise None
        """
        if not self._accepts(envelope):
            logger.debug(
                f"Dropping stale {envelope.kind.value} from {envelope.from_} "
                f"(room={envelope.room_id}, session closed={self.closed})"
            )
            return None

        payload = envelope.payload
        if envelope.kind is SignalKind.OFFER:
            if self.pc is None:
                if local_media is None:
                    raise ValueError("local media is required to answer an offer")
                return await self.create_as_responder(local_media, payload)
            return await self._renegotiate(payload)

        if self.pc is None:
            logger.debug(f"Dropping {envelope.kind.value} before connection exists")
            return None

        if envelope.kind is SignalKind.ANSWER:
            if self.pc.signalingState != "have-local-offer":
                logger.debug(f"Dropping answer in signaling state {self.pc.signalingState}")
                return None
            await self.pc.setRemoteDescription(
                RTCSessionDescription(sdp=payload["sdp"], type="answer")
            )
            logger.info(f"Applied answer from peer {self.peer_id}")
        elif envelope.kind is SignalKind.CANDIDATE:
            await self._add_candidate(payload)
        return None

    async def replace_outbound_video_track(self, track: Optional[MediaStreamTrack]) -> None:
        """Swap the track on the video sender without renegotiating.

        Before the connection exists there is nothing to swap; the connection
        picks up the handle's current outbound video when it is created.
        """
        if self.closed or self._video_sender is None:
            logger.debug("No video sender yet, outbound track will be used on connect")
            return
        result = self._video_sender.replaceTrack(track)
        if inspect.isawaitable(result):
            await result
        logger.info(f"Outbound video track replaced ({getattr(track, 'label', None) or 'none'})")

    async def close(self) -> None:
        """Close the connection. Safe to call any number of times."""
        if self.closed:
            return
        self.closed = True
        if self.pc is not None:
            await self.pc.close()
            logger.info(f"Peer connection to {self.peer_id} closed")

    # -- internals -----------------------------------------------------

    def _create_connection(self, local_media: LocalMediaHandle, role: CallRole) -> RTCPeerConnection:
        if self.closed:
            raise RuntimeError("peer session already closed")
        if self.pc is not None:
            raise RuntimeError("peer session already owns a connection")

        self.role = role
        pc = self._pc_factory(self.configuration)
        pc.on("track", self._on_track)
        pc.on("connectionstatechange", self._on_connection_state_change)

        if local_media.audio is not None:
            pc.addTrack(local_media.audio)

        video = local_media.outbound_video
        if video is not None:
            self._video_sender = pc.addTrack(video)
        else:
            # keep a video slot so a screen share can start without renegotiation
            self._video_sender = pc.addTransceiver("video", direction="sendrecv").sender

        self.pc = pc
        return pc

    async def _renegotiate(self, offer: Dict[str, Any]) -> Optional[SignalEnvelope]:
        if self.pc.signalingState != "stable":
            logger.warning(f"Ignoring offer in signaling state {self.pc.signalingState}")
            return None
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=offer["sdp"], type="offer"))
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        logger.info(f"Answered renegotiation offer from peer {self.peer_id}")
        return self._envelope(SignalKind.ANSWER, self._description(self.pc))

    async def _add_candidate(self, payload: Dict[str, Any]) -> None:
        entry = payload.get("candidate")
        if isinstance(entry, dict):
            sdp = entry.get("candidate")
            sdp_mid = entry.get("sdpMid")
            sdp_mline_index = entry.get("sdpMLineIndex")
        else:
            sdp = entry
            sdp_mid = payload.get("sdpMid")
            sdp_mline_index = payload.get("sdpMLineIndex")

        if not sdp:
            # end-of-candidates marker
            return

        if sdp.startswith("candidate:"):
            sdp = sdp.split(":", 1)[1]
        candidate = candidate_from_sdp(sdp)
        candidate.sdpMid = sdp_mid
        candidate.sdpMLineIndex = sdp_mline_index
        await self.pc.addIceCandidate(candidate)
        logger.debug(f"Added remote candidate from peer {self.peer_id}")

    def _accepts(self, envelope: SignalEnvelope) -> bool:
        if self.closed:
            return False
        if envelope.room_id is not None and envelope.room_id != self.room_id:
            return False
        if envelope.from_ is not None and envelope.from_ != self.peer_id:
            return False
        return True

    def _on_track(self, track: MediaStreamTrack) -> None:
        logger.info(f"Remote {track.kind} track received from peer {self.peer_id}")
        self.remote_tracks.append(track)
        if self._remote_stream_fired:
            return
        self._remote_stream_fired = True
        for callback in list(self._remote_stream_callbacks):
            callback(list(self.remote_tracks))

    def _on_connection_state_change(self) -> None:
        state = self.pc.connectionState if self.pc is not None else "closed"
        logger.info(f"Connection state with peer {self.peer_id}: {state}")
        if state == "failed" and not self.closed:
            for callback in list(self._failed_callbacks):
                callback()

    def _envelope(self, kind: SignalKind, payload: Dict[str, Any]) -> SignalEnvelope:
        return SignalEnvelope(
            kind=kind, to=self.peer_id, from_=self.local_id, room_id=self.room_id, payload=payload
        )

    @staticmethod
    def _description(pc: RTCPeerConnection) -> Dict[str, Any]:
        description = pc.localDescription
        return {"type": description.type, "sdp": description.sdp}
