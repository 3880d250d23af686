import json
from typing import Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from chat_relay import ChatRelay
from errors import CoordinatorError, InvalidEvent
from logging_config import get_logger
from room_lifecycle import RoomLifecycleController
from schemas.events import (
    INBOUND_EVENT_NAMES,
    ErrorEvent,
    InboundEvent,
    JoinMeeting,
    LeaveMeeting,
    MuteParticipant,
    SendMessage,
    StartScreenShare,
    StopScreenShare,
    UpdateParticipantStatus,
    WebRTCAnswer,
    WebRTCIceCandidate,
    WebRTCOffer,
    inbound_adapter,
)
from session_registry import SessionRegistry
from signaling import SignalingRelay

logger = get_logger(__name__)


def parse_inbound(raw: str) -> InboundEvent:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidEvent("Malformed message")
    if not isinstance(payload, dict):
        raise InvalidEvent("Malformed message")

    name = payload.get("event")
    if not isinstance(name, str) or name not in INBOUND_EVENT_NAMES:
        raise InvalidEvent(f"Unknown event: {name}")
    try:
        return inbound_adapter.validate_python(payload)
    except ValidationError as e:
        logger.debug(f"Invalid {name} payload: {e}")
        raise InvalidEvent(f"Invalid payload for {name}")


class EventDispatcher:
    """Routes inbound client events to the coordinator components.

    This is the error boundary of the WebSocket: a failed action is reported
    only to the connection that asked for it and never escapes to the
    receive loop.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        controller: RoomLifecycleController,
        signaling: SignalingRelay,
        chat: ChatRelay,
    ):
        self.registry = registry
        self.controller = controller
        self.signaling = signaling
        self.chat = chat
        self.handlers: Dict[type, Callable[[str, InboundEvent], Awaitable[None]]] = {
            JoinMeeting: self.on_join_meeting,
            LeaveMeeting: self.on_leave_meeting,
            SendMessage: self.on_send_message,
            UpdateParticipantStatus: self.on_update_participant_status,
            WebRTCOffer: self.on_webrtc_offer,
            WebRTCAnswer: self.on_webrtc_answer,
            WebRTCIceCandidate: self.on_webrtc_ice_candidate,
            StartScreenShare: self.on_start_screen_share,
            StopScreenShare: self.on_stop_screen_share,
            MuteParticipant: self.on_mute_participant,
        }

    async def dispatch(self, connection_id: str, raw: str) -> Optional[str]:
        """Handle one frame; returns the error message sent back, if any."""
        name = None
        try:
            event = parse_inbound(raw)
            name = event.event
            logger.debug(f"Dispatching {name} from connection {connection_id}")
            await self.handlers[type(event)](connection_id, event)
        except CoordinatorError as e:
            logger.info(f"Rejected {name or 'frame'} from connection {connection_id}: {e.message}")
            self.registry.send_to(connection_id, ErrorEvent(message=e.message))
            return e.message
        except Exception as e:
            logger.error(f"Error handling {name or 'frame'} from connection {connection_id}: {e}", exc_info=True)
            message = "Failed to process event"
            self.registry.send_to(connection_id, ErrorEvent(message=message))
            return message
        return None

    async def on_join_meeting(self, connection_id: str, event: JoinMeeting):
        await self.controller.join(connection_id, event.room_id, event.password)

    async def on_leave_meeting(self, connection_id: str, event: LeaveMeeting):
        self.controller.leave(connection_id)

    async def on_send_message(self, connection_id: str, event: SendMessage):
        self.chat.send(connection_id, event.room_id, event.text, event.kind)

    async def on_update_participant_status(self, connection_id: str, event: UpdateParticipantStatus):
        await self.controller.update_status(connection_id, event.room_id, muted=event.muted, video_on=event.video_on)

    async def on_webrtc_offer(self, connection_id: str, event: WebRTCOffer):
        self.signaling.relay(connection_id, event.target_user_id, event.room_id, "offer", event.offer)

    async def on_webrtc_answer(self, connection_id: str, event: WebRTCAnswer):
        self.signaling.relay(connection_id, event.target_user_id, event.room_id, "answer", event.answer)

    async def on_webrtc_ice_candidate(self, connection_id: str, event: WebRTCIceCandidate):
        self.signaling.relay(connection_id, event.target_user_id, event.room_id, "iceCandidate", event.candidate)

    async def on_start_screen_share(self, connection_id: str, event: StartScreenShare):
        self.controller.start_screen_share(connection_id, event.room_id)

    async def on_stop_screen_share(self, connection_id: str, event: StopScreenShare):
        self.controller.stop_screen_share(connection_id, event.room_id)

    async def on_mute_participant(self, connection_id: str, event: MuteParticipant):
        await self.controller.request_mute(connection_id, event.target_user_id, event.room_id)
