import itertools
from datetime import datetime

from errors import Forbidden, InvalidEvent, NotInRoom
from logging_config import get_logger
from schemas.events import NewMessage
from session_registry import SessionRegistry, normalize_room_id

logger = get_logger(__name__)


class ChatRelay:
    """Fans chat messages out to everyone in the sender's room, sender included.

    Nothing is stored: a member who is not connected when a message is sent
    never sees it.
    """

    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self._message_ids = itertools.count(1)

    def send(self, connection_id: str, room_id: str, text: str, kind: str = "text") -> NewMessage:
        sender = self.registry.lookup(connection_id)
        if sender is None or sender.room_id is None or sender.room_id != normalize_room_id(room_id):
            raise NotInRoom()

        room = self.registry.get_room(sender.room_id)
        if not room.settings.allow_chat:
            raise Forbidden("Chat is disabled in this meeting")

        text = text.strip()
        if not text:
            raise InvalidEvent("Message text is required")

        message = NewMessage(
            id=str(next(self._message_ids)),
            room_id=room.room_id,
            sender_user_id=sender.user_id,
            sender_name=sender.name,
            text=text,
            kind=kind or "text",
            timestamp=datetime.now().isoformat(),
        )
        delivered = self.registry.broadcast(room.room_id, message)
        logger.debug(f"Message {message.id} from {sender.name} in {room.room_id} delivered to {delivered} sessions")
        return message
