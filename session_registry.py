import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from auth import ConnectionIdentity
from errors import DuplicateConnection
from logging_config import get_logger
from schemas.events import OutboundEvent, ParticipantView, to_wire
from schemas.meetings import MeetingRecord, MeetingSettings

logger = get_logger(__name__)


def normalize_room_id(room_id: str) -> str:
    return room_id.strip().upper()


@dataclass(eq=False)
class SessionHandle:
    """One live client connection and its ephemeral meeting state."""

    connection_id: str
    user_id: Optional[str]
    name: str
    muted: bool = False
    video_on: bool = True
    sharing_screen: bool = False
    room_id: Optional[str] = None
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def participant_id(self) -> str:
        """Identifier peers use to address this session."""
        return self.user_id if self.user_id is not None else f"guest-{self.connection_id}"

    def send(self, event: OutboundEvent):
        self.outbox.put_nowait(to_wire(event))


@dataclass(eq=False)
class Room:
    room_id: str
    host_id: str
    capacity: int
    settings: MeetingSettings = field(default_factory=MeetingSettings)
    members: Dict[str, SessionHandle] = field(default_factory=dict)

    def is_host(self, session: SessionHandle) -> bool:
        return session.user_id is not None and session.user_id == self.host_id

    def view(self, session: SessionHandle) -> ParticipantView:
        return ParticipantView(
            connection_id=session.connection_id,
            user_id=session.participant_id,
            name=session.name,
            is_guest=session.is_guest,
            is_host=self.is_host(session),
            muted=session.muted,
            video_on=session.video_on,
            sharing_screen=session.sharing_screen,
        )


class SessionRegistry:
    """In-memory view of who is connected and which room they are in.

    Every method here is synchronous: membership is only ever changed between
    suspension points, so a check followed by a mutation cannot interleave
    with another connection's handler.
    """

    def __init__(self):
        self.sessions: Dict[str, SessionHandle] = {}
        self.rooms: Dict[str, Room] = {}

    def register(self, connection_id: str, identity: ConnectionIdentity) -> SessionHandle:
        if connection_id in self.sessions:
            raise DuplicateConnection(f"Connection {connection_id} is already registered")
        session = SessionHandle(connection_id=connection_id, user_id=identity.user_id, name=identity.name)
        self.sessions[connection_id] = session
        logger.debug(f"Registered connection {connection_id} ({identity.name}), {len(self.sessions)} live")
        return session

    def deregister(self, connection_id: str):
        session = self.sessions.pop(connection_id, None)
        if session is None:
            return
        if session.room_id is not None:
            self.remove_member(session)
        logger.debug(f"Deregistered connection {connection_id}, {len(self.sessions)} live")

    def lookup(self, connection_id: str) -> Optional[SessionHandle]:
        return self.sessions.get(connection_id)

    def get_room(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(normalize_room_id(room_id))

    def open_room(self, meeting: MeetingRecord) -> Room:
        room_id = normalize_room_id(meeting.meeting_id)
        room = self.rooms.get(room_id)
        if room is None:
            room = Room(
                room_id=room_id,
                host_id=meeting.host_id,
                capacity=meeting.max_participants,
                settings=meeting.settings,
            )
            self.rooms[room_id] = room
            logger.info(f"Opened room {room_id} (capacity {room.capacity})")
        else:
            room.host_id = meeting.host_id
            room.capacity = meeting.max_participants
            room.settings = meeting.settings
        return room

    def add_member(self, session: SessionHandle, room: Room):
        if session.room_id is not None and session.room_id != room.room_id:
            self.remove_member(session)
        room.members[session.connection_id] = session
        session.room_id = room.room_id
        # a room dropped while empty is re-attached by the next join
        self.rooms.setdefault(room.room_id, room)

    def remove_member(self, session: SessionHandle) -> Optional[Room]:
        """Take ``session`` out of its room, dropping the room once it is empty."""
        room = self.rooms.get(session.room_id) if session.room_id else None
        session.room_id = None
        session.sharing_screen = False
        if room is None:
            return None
        room.members.pop(session.connection_id, None)
        if not room.members:
            del self.rooms[room.room_id]
            logger.info(f"Room {room.room_id} is empty, removed from registry")
        return room

    def room_members(self, room_id: str) -> List[SessionHandle]:
        room = self.get_room(room_id)
        if room is None:
            return []
        return sorted(
            room.members.values(),
            key=lambda s: (not room.is_host(s), s.name.casefold(), s.connection_id),
        )

    def participant_views(self, room_id: str) -> List[ParticipantView]:
        room = self.get_room(room_id)
        if room is None:
            return []
        return [room.view(s) for s in self.room_members(room_id)]

    def find_participant(self, room_id: str, participant_id: Optional[str]) -> List[SessionHandle]:
        if participant_id is None:
            return []
        return [s for s in self.room_members(room_id) if s.participant_id == participant_id]

    def send_to(self, connection_id: str, event: OutboundEvent) -> bool:
        session = self.sessions.get(connection_id)
        if session is None:
            return False
        session.send(event)
        return True

    def broadcast(self, room_id: str, event: OutboundEvent, exclude: Optional[str] = None) -> int:
        room = self.get_room(room_id)
        if room is None:
            return 0
        sent = 0
        for session in list(room.members.values()):
            if session.connection_id == exclude:
                continue
            session.send(event)
            sent += 1
        return sent
