from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from errors import PersistenceFailure
from schemas.meetings import MeetingSettings


@pytest.mark.asyncio
class TestMeetingBackend:

    async def test_stored_meeting_reads_back(self, backend, meeting_factory):
        await backend.create_meeting(meeting_factory(
            require_password=True,
            password="pw",
            settings=MeetingSettings(allow_chat=False),
        ), ttl=3600)

        meeting = await backend.get_meeting("ABC12345")

        assert meeting.host_id == "user-a"
        assert meeting.max_participants == 2
        assert meeting.require_password is True
        assert meeting.check_password("pw")
        assert meeting.settings.allow_chat is False
        assert [p.user_id for p in meeting.participants] == ["user-a"]
        assert meeting.participants[0].is_host is True

    async def test_missing_meeting(self, backend):
        assert await backend.get_meeting("NOPE0000") is None
        assert await backend.find_active_meeting("NOPE0000") is None
        assert await backend.meeting_exists("NOPE0000") is False

    async def test_inactive_meeting_is_not_active(self, backend, meeting_factory):
        await backend.create_meeting(meeting_factory(is_active=False))

        assert await backend.get_meeting("ABC12345") is not None
        assert await backend.find_active_meeting("ABC12345") is None

    async def test_expired_meeting_is_not_active(self, backend, meeting_factory):
        past = (datetime.now() - timedelta(minutes=1)).isoformat()
        await backend.create_meeting(meeting_factory(expires_at=past))

        assert await backend.find_active_meeting("ABC12345") is None

    async def test_append_is_idempotent(self, backend, meeting):
        first = await backend.append_participant_if_absent("ABC12345", "user-b", "B")
        second = await backend.append_participant_if_absent("ABC12345", "user-b", "B renamed")

        stored = await backend.get_meeting("ABC12345")
        assert [p.user_id for p in stored.participants].count("user-b") == 1
        assert second.name == first.name == "B"

    async def test_append_keeps_existing_host_entry(self, backend, meeting):
        participant = await backend.append_participant_if_absent("ABC12345", "user-a", "A", is_host=False)

        assert participant.is_host is True

    async def test_append_records_initial_mute(self, backend, meeting):
        participant = await backend.append_participant_if_absent("ABC12345", "user-b", "B", is_muted=True)

        assert participant.is_muted is True
        stored = await backend.get_meeting("ABC12345")
        assert stored.find_participant("user-b").is_muted is True

    async def test_append_after_last_participant_removed_keeps_meeting_ttl(self, backend, meeting_factory):
        await backend.create_meeting(meeting_factory(), ttl=3600)
        await backend.remove_participant("ABC12345", "user-a")
        assert await backend.redis_client.exists("meeting:participants:ABC12345") == 0

        await backend.append_participant_if_absent("ABC12345", "user-b", "B")

        participants_ttl = await backend.redis_client.ttl("meeting:participants:ABC12345")
        assert 0 < participants_ttl <= 3600

    async def test_append_to_deleted_meeting(self, backend, meeting):
        await backend.delete_meeting("ABC12345")

        assert await backend.append_participant_if_absent("ABC12345", "user-b", "B") is None
        assert await backend.redis_client.exists("meeting:participants:ABC12345") == 0

    async def test_update_participant_status(self, backend, meeting):
        updated = await backend.update_participant_status("ABC12345", "user-a", is_muted=True)

        assert updated.is_muted is True
        assert updated.is_video_on is True
        stored = await backend.get_meeting("ABC12345")
        assert stored.find_participant("user-a").is_muted is True

    async def test_update_unknown_participant(self, backend, meeting):
        assert await backend.update_participant_status("ABC12345", "user-z", is_muted=True) is None

    async def test_is_host(self, backend, meeting):
        assert await backend.is_host("ABC12345", "user-a") is True
        assert await backend.is_host("ABC12345", "user-b") is False
        assert await backend.is_host("ABC12345", None) is False
        assert await backend.is_host("NOPE0000", "user-a") is False

    async def test_remove_participant_frees_entry(self, backend, meeting):
        await backend.append_participant_if_absent("ABC12345", "user-b", "B")

        assert await backend.remove_participant("ABC12345", "user-b") is True
        assert await backend.remove_participant("ABC12345", "user-b") is False
        stored = await backend.get_meeting("ABC12345")
        assert stored.find_participant("user-b") is None

    async def test_delete_meeting(self, backend, meeting):
        assert await backend.delete_meeting("ABC12345") is True
        assert await backend.get_meeting("ABC12345") is None

    async def test_redis_errors_become_persistence_failures(self, backend):
        backend.redis_client = AsyncMock()
        backend.redis_client.hgetall.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(PersistenceFailure):
            await backend.find_active_meeting("ABC12345")
