import random
import string
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from auth import ConnectionIdentity, get_current_user
from constants import DEFAULT_MAX_PARTICIPANTS, DEFAULT_MEETING_TTL_SECONDS, MEETING_ID_LENGTH
from errors import PersistenceFailure
from logging_config import get_logger
from schemas.meetings import (
    CreateMeetingRequest,
    CreateMeetingResponse,
    MeetingDetailsResponse,
    MeetingRecord,
    MeetingSettings,
    OnlineParticipant,
    ParticipantRecord,
)
from session_registry import normalize_room_id

logger = get_logger(__name__)

meetings_router = APIRouter(prefix="/meetings", tags=["meetings"])

MEETING_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_meeting_id(length: int = MEETING_ID_LENGTH) -> str:
    return ''.join(random.choices(MEETING_ID_ALPHABET, k=length))


def ws_url_for(request: Request) -> str:
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_base}/ws"


async def load_meeting(request: Request, meeting_id: str) -> MeetingRecord:
    try:
        meeting = await request.app.state.backend.find_active_meeting(meeting_id)
    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Meeting service unavailable")
    if meeting is None:
        logger.warning(f"Meeting {meeting_id} not found or has ended")
        raise HTTPException(status_code=404, detail="Meeting not found or has ended")
    return meeting


@meetings_router.post("/", response_model=CreateMeetingResponse, status_code=201)
async def create_meeting(
    body: CreateMeetingRequest,
    request: Request,
    user: ConnectionIdentity = Depends(get_current_user),
):
    logger.info(f"Meeting creation request from {user.user_id}, title: {body.title}")
    backend = request.app.state.backend
    if body.require_password and not body.password:
        raise HTTPException(status_code=400, detail="A password is required when require_password is set")

    expiry_seconds = body.expiry_seconds or DEFAULT_MEETING_TTL_SECONDS
    now = datetime.now()
    try:
        meeting_id = generate_meeting_id()
        while await backend.meeting_exists(meeting_id):
            meeting_id = generate_meeting_id()

        meeting = MeetingRecord(
            meeting_id=meeting_id,
            host_id=user.user_id,
            title=body.title.strip(),
            description=(body.description or "").strip(),
            max_participants=body.max_participants or DEFAULT_MAX_PARTICIPANTS,
            require_password=body.require_password,
            password=body.password if body.require_password else None,
            created_at=now.isoformat(),
            expires_at=(now + timedelta(seconds=expiry_seconds)).isoformat(),
            settings=body.settings or MeetingSettings(),
            participants=[ParticipantRecord(user_id=user.user_id, name=user.name, is_host=True)],
        )
        await backend.create_meeting(meeting, ttl=expiry_seconds)
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Failed to create meeting")

    logger.info(f"Meeting {meeting_id} created: host={user.user_id}, max_participants={meeting.max_participants}")
    return CreateMeetingResponse(
        meeting_id=meeting_id,
        ws_url=ws_url_for(request),
        expires_at=meeting.expires_at,
    )


@meetings_router.get("/{meeting_id}", response_model=MeetingDetailsResponse)
async def get_meeting_details(
    meeting_id: str,
    request: Request,
    password: Optional[str] = Query(None, description="Meeting password (required if the meeting is password protected)"),
):
    """
    Get meeting details together with who is connected right now.
    Password is required if the meeting is password protected.
    """
    meeting_id = normalize_room_id(meeting_id)
    meeting = await load_meeting(request, meeting_id)

    if meeting.require_password:
        if not password:
            raise HTTPException(status_code=401, detail="Password required for this meeting")
        if not meeting.check_password(password):
            logger.warning(f"Meeting details failed: Invalid password for meeting {meeting_id}")
            raise HTTPException(status_code=401, detail="Invalid password")

    views = request.app.state.registry.participant_views(meeting_id)
    online = [
        OnlineParticipant(
            connection_id=v.connection_id,
            user_id=v.user_id,
            name=v.name,
            is_host=v.is_host,
            is_guest=v.is_guest,
        )
        for v in views
    ]
    return MeetingDetailsResponse(
        meeting_id=meeting.meeting_id,
        title=meeting.title,
        description=meeting.description,
        host_id=meeting.host_id,
        created_at=meeting.created_at,
        expires_at=meeting.expires_at,
        max_participants=meeting.max_participants,
        online_count=len(online),
        online_participants=online,
        has_password=meeting.require_password,
        is_active=meeting.is_active,
        is_full=len(online) >= meeting.max_participants,
        settings=meeting.settings,
    )


@meetings_router.post("/{meeting_id}/leave")
async def leave_meeting(
    meeting_id: str,
    request: Request,
    user: ConnectionIdentity = Depends(get_current_user),
):
    # Explicit leave gives the slot back: the persisted participant entry goes
    # away and any live sessions of the user are taken out of the room.
    meeting_id = normalize_room_id(meeting_id)
    await load_meeting(request, meeting_id)
    try:
        await request.app.state.backend.remove_participant(meeting_id, user.user_id)
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Failed to leave meeting")

    evicted = request.app.state.controller.evict_user(meeting_id, user.user_id)
    logger.info(f"User {user.user_id} left meeting {meeting_id}, {evicted} live sessions closed")
    return {"message": "Successfully left meeting"}


@meetings_router.delete("/{meeting_id}")
async def delete_meeting(
    meeting_id: str,
    request: Request,
    user: ConnectionIdentity = Depends(get_current_user),
):
    meeting_id = normalize_room_id(meeting_id)
    backend = request.app.state.backend
    try:
        meeting = await backend.get_meeting(meeting_id)
    except PersistenceFailure:
        raise HTTPException(status_code=503, detail="Meeting service unavailable")
    if meeting is None:
        raise HTTPException(status_code=404, detail="Meeting not found")
    if meeting.host_id != user.user_id:
        logger.warning(f"Delete meeting failed: {user.user_id} is not the host of {meeting_id}")
        raise HTTPException(status_code=403, detail="Only the host can delete the meeting")

    try:
        await backend.delete_meeting(meeting_id)
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Failed to delete meeting")
    request.app.state.controller.close_room(meeting_id)

    logger.info(f"Meeting {meeting_id} deleted by host {user.user_id}")
    return {"message": "Meeting deleted successfully"}
