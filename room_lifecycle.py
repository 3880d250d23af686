from dataclasses import dataclass
from typing import List, Optional

from backend import MeetingBackend
from errors import (
    Forbidden,
    NotInRoom,
    ParticipantNotFound,
    PersistenceFailure,
    RoomFull,
    RoomNotFound,
    Unauthorized,
    UnknownConnection,
)
from logging_config import get_logger
from schemas.events import (
    ErrorEvent,
    MeetingDeleted,
    MeetingJoined,
    MuteRequest,
    ParticipantJoined,
    ParticipantLeft,
    ParticipantStatusUpdated,
    ParticipantView,
    UserConnected,
    UserDisconnected,
    UserStartedScreenShare,
    UserStoppedScreenShare,
)
from schemas.meetings import MeetingRecord, ParticipantRecord
from session_registry import Room, SessionHandle, SessionRegistry, normalize_room_id

logger = get_logger(__name__)


@dataclass
class JoinResult:
    room_id: str
    participants: List[ParticipantView]
    is_host: bool
    rejoined: bool = False


class RoomLifecycleController:
    """Moves sessions in and out of rooms and keeps the meeting record in step.

    Persistence calls are the only suspension points. Anything read before one
    of them is re-checked afterwards, and every change to room membership
    happens in a single synchronous stretch together with the broadcasts it
    causes, so events for a room leave in the order they were produced.
    """

    def __init__(self, registry: SessionRegistry, backend: MeetingBackend):
        self.registry = registry
        self.backend = backend

    # -- join / leave ------------------------------------------------------

    async def join(self, connection_id: str, room_id: str, password: Optional[str] = None) -> Optional[JoinResult]:
        session = self._require_session(connection_id)
        room_id = normalize_room_id(room_id)

        if session.room_id == room_id:
            logger.debug(f"Connection {connection_id} already in room {room_id}, resending membership")
            return self._reply_joined(session, self.registry.get_room(room_id), rejoined=True)

        try:
            meeting = await self.backend.find_active_meeting(room_id)
        except PersistenceFailure as e:
            raise PersistenceFailure("Failed to join meeting") from e
        if meeting is None:
            logger.info(f"Join rejected for {connection_id}: meeting {room_id} not found")
            raise RoomNotFound()

        if not meeting.check_password(password):
            logger.warning(f"Join rejected for {connection_id}: invalid password for meeting {room_id}")
            raise Unauthorized()

        if not self._still_connected(session):
            return None
        self._check_capacity(session, room_id, meeting.max_participants)

        participant = meeting.find_participant(session.user_id)
        rejoined = participant is not None
        if session.user_id is not None and participant is None:
            try:
                participant = await self.backend.append_participant_if_absent(
                    room_id,
                    session.user_id,
                    session.name,
                    is_host=session.user_id == meeting.host_id,
                    is_muted=meeting.settings.mute_on_join,
                )
            except PersistenceFailure as e:
                raise PersistenceFailure("Failed to join meeting") from e
            if not self._still_connected(session):
                return None
            if participant is None:
                logger.info(f"Join rejected for {connection_id}: meeting {room_id} was deleted during join")
                raise RoomNotFound()
            # another join may have taken the last slot while we were waiting;
            # if so the stored entry stays as a record of admission
            self._check_capacity(session, room_id, meeting.max_participants)

        return self._commit_join(session, meeting, participant, rejoined)

    def leave(self, connection_id: str) -> bool:
        session = self.registry.lookup(connection_id)
        if session is None or session.room_id is None:
            return False
        self._leave_room(session)
        return True

    def handle_disconnect(self, connection_id: str):
        self.leave(connection_id)
        self.registry.deregister(connection_id)
        logger.info(f"Connection {connection_id} disconnected")

    # -- status ------------------------------------------------------------

    async def update_status(
        self,
        connection_id: str,
        room_id: Optional[str] = None,
        muted: Optional[bool] = None,
        video_on: Optional[bool] = None,
    ) -> ParticipantView:
        session = self._require_room(connection_id, room_id)
        room = self.registry.get_room(session.room_id)
        if muted is not None:
            session.muted = muted
        if video_on is not None:
            session.video_on = video_on

        self.registry.broadcast(room.room_id, ParticipantStatusUpdated(
            room_id=room.room_id,
            user_id=session.participant_id,
            user_name=session.name,
            connection_id=session.connection_id,
            muted=session.muted,
            video_on=session.video_on,
        ))
        view = room.view(session)

        if session.user_id is not None:
            try:
                await self.backend.update_participant_status(
                    room.room_id, session.user_id, is_muted=muted, is_video_on=video_on
                )
            except PersistenceFailure as e:
                logger.warning(f"Could not persist status of {session.user_id} in {room.room_id}: {e}")
        return view

    async def request_mute(self, requester_connection_id: str, target_user_id: str, room_id: str) -> int:
        """Ask every session of ``target_user_id`` to mute itself.

        Only the host of the stored meeting may ask. Muting is cooperative:
        the target's client is expected to answer with its own status update.
        """
        session = self._require_room(requester_connection_id, room_id)
        room_id = session.room_id
        try:
            allowed = await self.backend.is_host(room_id, session.user_id)
        except PersistenceFailure as e:
            raise PersistenceFailure("Failed to mute participant") from e
        if not allowed:
            logger.warning(f"Mute request from non-host {requester_connection_id} in {room_id}")
            raise Forbidden("Not authorized to mute participants")

        # the requester may have left while the host check was in flight
        session = self._require_room(requester_connection_id, room_id)
        room = self.registry.get_room(session.room_id)
        targets = self.registry.find_participant(room.room_id, target_user_id)
        if not targets:
            raise ParticipantNotFound()
        for target in targets:
            target.send(MuteRequest(room_id=room.room_id, target_user_id=target_user_id))
        logger.info(f"Host {session.participant_id} asked {target_user_id} to mute in {room.room_id}")
        return len(targets)

    # -- screen sharing ----------------------------------------------------

    def start_screen_share(self, connection_id: str, room_id: str):
        session = self._require_room(connection_id, room_id)
        room = self.registry.get_room(session.room_id)
        if not room.settings.allow_screen_share:
            raise Forbidden("Screen sharing is disabled in this meeting")
        session.sharing_screen = True
        self.registry.broadcast(room.room_id, UserStartedScreenShare(
            user_id=session.participant_id,
            user_name=session.name,
            connection_id=session.connection_id,
        ), exclude=session.connection_id)

    def stop_screen_share(self, connection_id: str, room_id: str):
        session = self._require_room(connection_id, room_id)
        session.sharing_screen = False
        self.registry.broadcast(session.room_id, UserStoppedScreenShare(
            user_id=session.participant_id,
            user_name=session.name,
            connection_id=session.connection_id,
        ), exclude=session.connection_id)

    # -- persistence side --------------------------------------------------

    def evict_user(self, room_id: str, user_id: str) -> int:
        """Remove the live sessions of a user whose membership was revoked."""
        sessions = self.registry.find_participant(normalize_room_id(room_id), user_id)
        for session in sessions:
            self._leave_room(session)
        return len(sessions)

    def close_room(self, room_id: str, message: str = "Meeting has been deleted by the host") -> int:
        room_id = normalize_room_id(room_id)
        members = self.registry.room_members(room_id)
        self.registry.broadcast(room_id, MeetingDeleted(room_id=room_id, message=message))
        for session in members:
            self.registry.remove_member(session)
        logger.info(f"Room {room_id} closed, {len(members)} sessions released")
        return len(members)

    # -- internals ---------------------------------------------------------

    def _require_session(self, connection_id: str) -> SessionHandle:
        session = self.registry.lookup(connection_id)
        if session is None:
            raise UnknownConnection()
        return session

    def _require_room(self, connection_id: str, room_id: Optional[str]) -> SessionHandle:
        session = self.registry.lookup(connection_id)
        if session is None or session.room_id is None:
            raise NotInRoom()
        if room_id is not None and normalize_room_id(room_id) != session.room_id:
            raise NotInRoom()
        return session

    def _still_connected(self, session: SessionHandle) -> bool:
        if self.registry.lookup(session.connection_id) is not session:
            logger.info(f"Connection {session.connection_id} went away during join")
            return False
        return True

    def _check_capacity(self, session: SessionHandle, room_id: str, capacity: int):
        room = self.registry.get_room(room_id)
        if room is None:
            occupied = 0
        else:
            # a second connection of the same user takes over the first one's slot
            occupied = sum(
                1 for s in room.members.values()
                if s is not session and not (s.user_id is not None and s.user_id == session.user_id)
            )
        if occupied >= capacity:
            logger.info(f"Join rejected for {session.connection_id}: room {room_id} is full ({occupied}/{capacity})")
            raise RoomFull()

    def _commit_join(
        self,
        session: SessionHandle,
        meeting: MeetingRecord,
        participant: Optional[ParticipantRecord],
        rejoined: bool,
    ) -> JoinResult:
        if session.room_id is not None:
            self._leave_room(session)

        room = self.registry.open_room(meeting)
        if session.user_id is not None:
            for previous in self.registry.find_participant(room.room_id, session.user_id):
                self._leave_room(previous)
                previous.send(ErrorEvent(message="Meeting joined from another connection"))
                logger.info(f"Connection {previous.connection_id} replaced by {session.connection_id} in {room.room_id}")

        if rejoined and participant is not None:
            session.muted = participant.is_muted
            session.video_on = participant.is_video_on
        else:
            session.muted = meeting.settings.mute_on_join
            session.video_on = True

        self.registry.add_member(session, room)
        participants = self.registry.participant_views(room.room_id)
        self.registry.broadcast(room.room_id, ParticipantJoined(
            room_id=room.room_id,
            participant=room.view(session),
            participants=participants,
        ), exclude=session.connection_id)
        self.registry.broadcast(room.room_id, UserConnected(
            user_id=session.participant_id,
            user_name=session.name,
            connection_id=session.connection_id,
            is_guest=session.is_guest,
        ), exclude=session.connection_id)

        logger.info(f"{session.name} ({session.connection_id}) joined meeting {room.room_id}, {len(room.members)}/{room.capacity}")
        return self._reply_joined(session, room, rejoined=rejoined)

    def _reply_joined(self, session: SessionHandle, room: Room, rejoined: bool) -> JoinResult:
        result = JoinResult(
            room_id=room.room_id,
            participants=self.registry.participant_views(room.room_id),
            is_host=room.is_host(session),
            rejoined=rejoined,
        )
        session.send(MeetingJoined(room_id=result.room_id, participants=result.participants, is_host=result.is_host))
        return result

    def _leave_room(self, session: SessionHandle):
        was_sharing = session.sharing_screen
        room = self.registry.remove_member(session)
        if room is None:
            return
        if was_sharing:
            self.registry.broadcast(room.room_id, UserStoppedScreenShare(
                user_id=session.participant_id,
                user_name=session.name,
                connection_id=session.connection_id,
            ))
        self.registry.broadcast(room.room_id, ParticipantLeft(
            room_id=room.room_id,
            user_id=session.participant_id,
            name=session.name,
            connection_id=session.connection_id,
            participants=self.registry.participant_views(room.room_id),
        ))
        self.registry.broadcast(room.room_id, UserDisconnected(
            user_id=session.participant_id,
            user_name=session.name,
            connection_id=session.connection_id,
        ))
        logger.info(f"{session.name} ({session.connection_id}) left meeting {room.room_id}")
