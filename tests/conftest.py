"""
Pytest configuration and shared fixtures for the meeting coordinator tests.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List

import fakeredis
import jwt
import pytest
import pytest_asyncio

from auth import ConnectionIdentity
from backend import MeetingBackend
from chat_relay import ChatRelay
from constants import JWT_ALGORITHM, JWT_SECRET
from room_lifecycle import RoomLifecycleController
from schemas.meetings import MeetingRecord, MeetingSettings, ParticipantRecord
from session_registry import SessionRegistry
from signaling import SignalingRelay

ROOM_ID = "ABC12345"
HOST_ID = "user-a"


def build_meeting(
    meeting_id: str = ROOM_ID,
    host_id: str = HOST_ID,
    host_name: str = "A",
    max_participants: int = 2,
    **overrides,
) -> MeetingRecord:
    now = datetime.now()
    fields = dict(
        meeting_id=meeting_id,
        host_id=host_id,
        title="Weekly sync",
        max_participants=max_participants,
        created_at=now.isoformat(),
        expires_at=(now + timedelta(hours=1)).isoformat(),
        settings=MeetingSettings(),
        participants=[ParticipantRecord(user_id=host_id, name=host_name, is_host=True)],
    )
    fields.update(overrides)
    return MeetingRecord(**fields)


def make_token(user_id: str, name: str) -> str:
    return jwt.encode({"userId": user_id, "name": name}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def backend(fake_server):
    client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    yield MeetingBackend(client)
    await client.aclose()


@pytest_asyncio.fixture
async def meeting(backend):
    """The ABC12345 meeting: host user-a, capacity 2."""
    return await backend.create_meeting(build_meeting())


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def controller(registry, backend):
    return RoomLifecycleController(registry, backend)


@pytest.fixture
def chat(registry):
    return ChatRelay(registry)


@pytest.fixture
def signaling(registry):
    return SignalingRelay(registry)


@pytest.fixture
def connect(registry):
    """Register a connection; ``user_id=None`` makes it a guest."""

    def _connect(connection_id: str, user_id=None, name: str = "Guest"):
        return registry.register(connection_id, ConnectionIdentity(user_id=user_id, name=name))

    return _connect


@pytest.fixture
def drain():
    """Pop every event queued for a session so far."""

    def _drain(session) -> List[Dict[str, Any]]:
        events = []
        while not session.outbox.empty():
            events.append(session.outbox.get_nowait())
        return events

    return _drain


@pytest.fixture
def token_for():
    return make_token


@pytest.fixture
def meeting_factory():
    return build_meeting
