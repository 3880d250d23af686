from typing import Any, Optional

from errors import InvalidEvent, NotInRoom
from logging_config import get_logger
from schemas.events import RelayedAnswer, RelayedIceCandidate, RelayedOffer
from session_registry import SessionRegistry, normalize_room_id

logger = get_logger(__name__)

# signaling kind -> (outbound event model, name of the payload field)
SIGNAL_KINDS = {
    "offer": (RelayedOffer, "offer"),
    "answer": (RelayedAnswer, "answer"),
    "iceCandidate": (RelayedIceCandidate, "candidate"),
}


class SignalingRelay:
    """Forwards WebRTC negotiation payloads between members of one room.

    Payloads are passed through untouched. Every other member of the room
    receives the event and clients drop the ones whose ``targetUserId`` is
    not theirs.
    """

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def relay(
        self,
        sender_connection_id: str,
        target_user_id: Optional[str],
        room_id: str,
        kind: str,
        payload: Any,
    ) -> int:
        if kind not in SIGNAL_KINDS:
            raise InvalidEvent(f"Unknown signaling kind: {kind}")

        sender = self.registry.lookup(sender_connection_id)
        if sender is None or sender.room_id is None or sender.room_id != normalize_room_id(room_id):
            raise NotInRoom()

        event_model, payload_field = SIGNAL_KINDS[kind]
        event = event_model(**{
            "from_connection_id": sender.connection_id,
            "from_user_id": sender.participant_id,
            "from_name": sender.name,
            "target_user_id": target_user_id,
            payload_field: payload,
        })
        delivered = self.registry.broadcast(sender.room_id, event, exclude=sender.connection_id)
        logger.debug(f"Relayed {kind} from {sender.participant_id} to {target_user_id} in {sender.room_id} ({delivered} recipients)")
        return delivered
