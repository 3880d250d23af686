import json
from functools import wraps
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from constants import REDIS_DB, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT
from errors import PersistenceFailure
from logging_config import get_logger
from redis_keys import MEETING_META_KEY, MEETING_PARTICIPANTS_KEY
from schemas.meetings import MeetingRecord, ParticipantRecord

logger = get_logger(__name__)


def persistence_call(func):
    """Turn redis errors raised by a backend coroutine into PersistenceFailure."""

    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except RedisError as e:
            logger.error(f"Redis error in {func.__name__}: {e}", exc_info=True)
            raise PersistenceFailure() from e

    return wrapper


class MeetingBackend:
    """Meeting documents and their participant lists, stored in Redis.

    A meeting lives in two keys: a hash of json encoded meeting fields and a
    hash mapping user id to the json encoded participant record. Keeping the
    participants in their own hash lets append and update work on a single
    field atomically, so concurrent joins never clobber each other.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is None:
            logger.info(f"Initializing MeetingBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            redis_client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                password=REDIS_PASSWORD,
                db=REDIS_DB,
                decode_responses=True,
            )
        self.redis_client = redis_client

    async def ping(self):
        await self.redis_client.ping()

    async def close(self):
        await self.redis_client.aclose()

    @persistence_call
    async def create_meeting(self, meeting: MeetingRecord, ttl: Optional[int] = None) -> MeetingRecord:
        logger.info(f"Creating meeting {meeting.meeting_id} with TTL {ttl} seconds")
        key = MEETING_META_KEY.format(meeting_id=meeting.meeting_id)
        participants_key = MEETING_PARTICIPANTS_KEY.format(meeting_id=meeting.meeting_id)

        meeting_data = {}
        for k, v in meeting.model_dump(exclude={"participants"}).items():
            if v is None:
                continue  # Skip None values
            meeting_data[k] = json.dumps(v)

        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=meeting_data)
            for participant in meeting.participants:
                pipe.hset(participants_key, participant.user_id, participant.model_dump_json())
            if ttl:
                pipe.expire(key, ttl)
                pipe.expire(participants_key, ttl)
            await pipe.execute()
        logger.debug(f"Meeting {meeting.meeting_id} created with key: {key}")
        return meeting

    @persistence_call
    async def meeting_exists(self, meeting_id: str) -> bool:
        return bool(await self.redis_client.exists(MEETING_META_KEY.format(meeting_id=meeting_id)))

    @persistence_call
    async def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        logger.debug(f"Fetching meeting {meeting_id}")
        key = MEETING_META_KEY.format(meeting_id=meeting_id)
        meeting_data = await self.redis_client.hgetall(key)
        if not meeting_data:
            logger.debug(f"Meeting {meeting_id} not found in Redis")
            return None

        result = {}
        for k, v in meeting_data.items():
            try:
                result[k] = json.loads(v)
            except (json.JSONDecodeError, TypeError):
                result[k] = v

        participants_key = MEETING_PARTICIPANTS_KEY.format(meeting_id=meeting_id)
        raw_participants = await self.redis_client.hgetall(participants_key)
        participants = [ParticipantRecord.model_validate_json(v) for v in raw_participants.values()]
        participants.sort(key=lambda p: p.joined_at)
        result["participants"] = participants
        return MeetingRecord.model_validate(result)

    async def find_active_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        meeting = await self.get_meeting(meeting_id)
        if meeting is None:
            return None
        if not meeting.is_active:
            logger.debug(f"Meeting {meeting_id} is not active")
            return None
        if meeting.is_expired:
            logger.info(f"Meeting {meeting_id} expired at {meeting.expires_at}")
            return None
        return meeting

    @persistence_call
    async def append_participant_if_absent(
        self, meeting_id: str, user_id: str, name: str, is_host: bool = False, is_muted: bool = False
    ) -> Optional[ParticipantRecord]:
        """Record ``user_id`` as a participant unless it already is one.

        Returns the stored record, or None when the meeting no longer exists.
        The participant hash always expires together with the meeting.
        """
        key = MEETING_META_KEY.format(meeting_id=meeting_id)
        participants_key = MEETING_PARTICIPANTS_KEY.format(meeting_id=meeting_id)
        participant = ParticipantRecord(user_id=user_id, name=name, is_host=is_host, is_muted=is_muted)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key, participants_key)
                    ttl = await pipe.ttl(key)
                    if ttl == -2:
                        await pipe.unwatch()
                        logger.debug(f"Meeting {meeting_id} is gone, not appending {user_id}")
                        return None
                    existing = await pipe.hget(participants_key, user_id)
                    if existing is not None:
                        await pipe.unwatch()
                        logger.debug(f"Participant {user_id} already recorded for meeting {meeting_id}")
                        return ParticipantRecord.model_validate_json(existing)
                    pipe.multi()
                    pipe.hsetnx(participants_key, user_id, participant.model_dump_json())
                    if ttl > 0:
                        pipe.expire(participants_key, ttl)
                    await pipe.execute()
                    logger.debug(f"Participant {user_id} appended to meeting {meeting_id}")
                    return participant
                except WatchError:
                    logger.debug(f"Meeting {meeting_id} changed during append, retrying")
                    continue

    @persistence_call
    async def update_participant_status(
        self,
        meeting_id: str,
        user_id: str,
        is_muted: Optional[bool] = None,
        is_video_on: Optional[bool] = None,
    ) -> Optional[ParticipantRecord]:
        participants_key = MEETING_PARTICIPANTS_KEY.format(meeting_id=meeting_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(participants_key)
                    raw = await pipe.hget(participants_key, user_id)
                    if raw is None:
                        await pipe.unwatch()
                        logger.debug(f"No participant {user_id} in meeting {meeting_id} to update")
                        return None
                    participant = ParticipantRecord.model_validate_json(raw)
                    if is_muted is not None:
                        participant.is_muted = is_muted
                    if is_video_on is not None:
                        participant.is_video_on = is_video_on
                    pipe.multi()
                    pipe.hset(participants_key, user_id, participant.model_dump_json())
                    await pipe.execute()
                    return participant
                except WatchError:
                    logger.debug(f"Participant hash for {meeting_id} changed during update, retrying")
                    continue

    @persistence_call
    async def remove_participant(self, meeting_id: str, user_id: str) -> bool:
        participants_key = MEETING_PARTICIPANTS_KEY.format(meeting_id=meeting_id)
        removed = await self.redis_client.hdel(participants_key, user_id)
        logger.debug(f"Participant {user_id} removed from meeting {meeting_id}: {removed}")
        return bool(removed)

    @persistence_call
    async def is_host(self, meeting_id: str, user_id: Optional[str]) -> bool:
        if user_id is None:
            return False
        host_id = await self.redis_client.hget(MEETING_META_KEY.format(meeting_id=meeting_id), "host_id")
        return host_id is not None and json.loads(host_id) == user_id

    @persistence_call
    async def delete_meeting(self, meeting_id: str) -> bool:
        logger.info(f"Deleting meeting {meeting_id}")
        deleted = await self.redis_client.delete(
            MEETING_META_KEY.format(meeting_id=meeting_id),
            MEETING_PARTICIPANTS_KEY.format(meeting_id=meeting_id),
        )
        return bool(deleted)
