from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from constants import DEFAULT_MAX_PARTICIPANTS, DEFAULT_MEETING_TTL_SECONDS


class MeetingSettings(BaseModel):
    allow_chat: bool = True
    allow_screen_share: bool = True
    mute_on_join: bool = False


class ParticipantRecord(BaseModel):
    user_id: str
    name: str
    joined_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    is_muted: bool = False
    is_video_on: bool = True
    is_host: bool = False


class MeetingRecord(BaseModel):
    meeting_id: str
    host_id: str
    title: str
    description: str = ""
    is_active: bool = True
    max_participants: int = DEFAULT_MAX_PARTICIPANTS
    require_password: bool = False
    password: Optional[str] = None
    created_at: str
    expires_at: Optional[str] = None
    settings: MeetingSettings = Field(default_factory=MeetingSettings)
    participants: List[ParticipantRecord] = Field(default_factory=list)

    @property
    def is_expired(self) -> bool:
        if not self.expires_at:
            return False
        try:
            return datetime.fromisoformat(self.expires_at) < datetime.now()
        except ValueError:
            # unparseable timestamps never expire a meeting
            return False

    def find_participant(self, user_id: Optional[str]) -> Optional[ParticipantRecord]:
        if user_id is None:
            return None
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def check_password(self, password: Optional[str]) -> bool:
        if not self.require_password:
            return True
        return password is not None and password == self.password


class CreateMeetingRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    max_participants: Optional[int] = Field(DEFAULT_MAX_PARTICIPANTS, ge=1)
    require_password: bool = False
    password: Optional[str] = None
    expiry_seconds: Optional[int] = Field(DEFAULT_MEETING_TTL_SECONDS, ge=60)
    settings: Optional[MeetingSettings] = None


class CreateMeetingResponse(BaseModel):
    meeting_id: str
    ws_url: str
    expires_at: str


class OnlineParticipant(BaseModel):
    connection_id: str
    user_id: str
    name: str
    is_host: bool
    is_guest: bool


class MeetingDetailsResponse(BaseModel):
    meeting_id: str
    title: str
    description: str
    host_id: str
    created_at: str
    expires_at: Optional[str]
    max_participants: int
    online_count: int
    online_participants: List[OnlineParticipant]
    has_password: bool
    is_active: bool
    is_full: bool
    settings: MeetingSettings
