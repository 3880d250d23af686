from typing import Optional


class CoordinatorError(Exception):
    """Base class for errors reported back to the connection that caused them."""

    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(CoordinatorError):
    default_message = "Meeting not found"


class Unauthorized(CoordinatorError):
    default_message = "Invalid meeting password"


class RoomFull(CoordinatorError):
    default_message = "Meeting is full"


class NotInRoom(CoordinatorError):
    default_message = "Not in this meeting"


class Forbidden(CoordinatorError):
    default_message = "Not authorized"


class ParticipantNotFound(CoordinatorError):
    default_message = "Participant not found"


class DuplicateConnection(CoordinatorError):
    default_message = "Connection already registered"


class UnknownConnection(CoordinatorError):
    default_message = "Connection is not registered"


class InvalidEvent(CoordinatorError):
    default_message = "Invalid event"


class PersistenceFailure(CoordinatorError):
    default_message = "Meeting service unavailable"
