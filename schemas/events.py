"""Wire events exchanged with meeting clients over the WebSocket.

Every frame is a flat JSON object whose ``event`` field names the event and
whose remaining fields are camelCase. Inbound frames are validated against a
closed discriminated union; outbound events are built from the models below
and serialized with :func:`to_wire`.
"""
from typing import Annotated, Any, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------

class JoinMeeting(WireModel):
    event: Literal["join-meeting"]
    room_id: str = Field(..., min_length=1)
    password: Optional[str] = None


class LeaveMeeting(WireModel):
    event: Literal["leave-meeting"]


class SendMessage(WireModel):
    event: Literal["send-message"]
    room_id: str
    text: str = Field(..., max_length=2000)
    kind: str = Field("text", max_length=32)


class UpdateParticipantStatus(WireModel):
    event: Literal["update-participant-status"]
    room_id: str
    muted: Optional[bool] = None
    video_on: Optional[bool] = None


class WebRTCOffer(WireModel):
    event: Literal["webrtc-offer"]
    room_id: str
    target_user_id: Optional[str] = None
    offer: Any


class WebRTCAnswer(WireModel):
    event: Literal["webrtc-answer"]
    room_id: str
    target_user_id: Optional[str] = None
    answer: Any


class WebRTCIceCandidate(WireModel):
    event: Literal["webrtc-ice-candidate"]
    room_id: str
    target_user_id: Optional[str] = None
    candidate: Any


class StartScreenShare(WireModel):
    event: Literal["start-screen-share"]
    room_id: str


class StopScreenShare(WireModel):
    event: Literal["stop-screen-share"]
    room_id: str


class MuteParticipant(WireModel):
    event: Literal["mute-participant"]
    room_id: str
    target_user_id: str


INBOUND_MODELS = (
    JoinMeeting,
    LeaveMeeting,
    SendMessage,
    UpdateParticipantStatus,
    WebRTCOffer,
    WebRTCAnswer,
    WebRTCIceCandidate,
    StartScreenShare,
    StopScreenShare,
    MuteParticipant,
)

InboundEvent = Annotated[Union[INBOUND_MODELS], Field(discriminator="event")]

inbound_adapter = TypeAdapter(InboundEvent)

INBOUND_EVENT_NAMES = frozenset(
    get_args(model.model_fields["event"].annotation)[0] for model in INBOUND_MODELS
)


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------

class ParticipantView(WireModel):
    connection_id: str
    user_id: str
    name: str
    is_guest: bool
    is_host: bool
    muted: bool
    video_on: bool
    sharing_screen: bool = False


class MeetingJoined(WireModel):
    event: Literal["meeting-joined"] = "meeting-joined"
    room_id: str
    participants: List[ParticipantView]
    is_host: bool


class ParticipantJoined(WireModel):
    event: Literal["participant-joined"] = "participant-joined"
    room_id: str
    participant: ParticipantView
    participants: List[ParticipantView]


class ParticipantLeft(WireModel):
    event: Literal["participant-left"] = "participant-left"
    room_id: str
    user_id: str
    name: str
    connection_id: str
    participants: List[ParticipantView]


class UserConnected(WireModel):
    event: Literal["user-connected"] = "user-connected"
    user_id: str
    user_name: str
    connection_id: str
    is_guest: bool


class UserDisconnected(WireModel):
    event: Literal["user-disconnected"] = "user-disconnected"
    user_id: str
    user_name: str
    connection_id: str


class NewMessage(WireModel):
    event: Literal["new-message"] = "new-message"
    id: str
    room_id: str
    sender_user_id: Optional[str]
    sender_name: str
    text: str
    kind: str
    timestamp: str


class ParticipantStatusUpdated(WireModel):
    event: Literal["participant-status-updated"] = "participant-status-updated"
    room_id: str
    user_id: str
    user_name: str
    connection_id: str
    muted: bool
    video_on: bool


class RelayedOffer(WireModel):
    event: Literal["webrtc-offer"] = "webrtc-offer"
    from_connection_id: str
    from_user_id: str
    from_name: str
    target_user_id: Optional[str] = None
    offer: Any


class RelayedAnswer(WireModel):
    event: Literal["webrtc-answer"] = "webrtc-answer"
    from_connection_id: str
    from_user_id: str
    from_name: str
    target_user_id: Optional[str] = None
    answer: Any


class RelayedIceCandidate(WireModel):
    event: Literal["webrtc-ice-candidate"] = "webrtc-ice-candidate"
    from_connection_id: str
    from_user_id: str
    from_name: str
    target_user_id: Optional[str] = None
    candidate: Any


class UserStartedScreenShare(WireModel):
    event: Literal["user-started-screen-share"] = "user-started-screen-share"
    user_id: str
    user_name: str
    connection_id: str


class UserStoppedScreenShare(WireModel):
    event: Literal["user-stopped-screen-share"] = "user-stopped-screen-share"
    user_id: str
    user_name: str
    connection_id: str


class MuteRequest(WireModel):
    event: Literal["mute-request"] = "mute-request"
    room_id: str
    target_user_id: str
    from_host: bool = True


class MeetingDeleted(WireModel):
    event: Literal["meeting-deleted"] = "meeting-deleted"
    room_id: str
    message: str


class ErrorEvent(WireModel):
    event: Literal["error"] = "error"
    message: str


OutboundEvent = Union[
    MeetingJoined,
    ParticipantJoined,
    ParticipantLeft,
    UserConnected,
    UserDisconnected,
    NewMessage,
    ParticipantStatusUpdated,
    RelayedOffer,
    RelayedAnswer,
    RelayedIceCandidate,
    UserStartedScreenShare,
    UserStoppedScreenShare,
    MuteRequest,
    MeetingDeleted,
    ErrorEvent,
]


def to_wire(event: OutboundEvent) -> dict:
    return event.model_dump(by_alias=True, mode="json")
