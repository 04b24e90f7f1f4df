"""
Errors raised by the signaling core.

Every SignalingError is turned into an ``error`` frame for the sender by the
router; none of them is fatal to the connection or the process.
"""


class SignalingError(ValueError):
    """Base class for errors reported back to the sending client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MalformedFrameError(SignalingError):
    """Raised when an inbound frame is not a JSON object."""

    def __init__(self, message: str = "Invalid JSON") -> None:
        super().__init__(message)


class UnknownMessageTypeError(SignalingError):
    """Raised when an inbound frame carries a type the relay does not handle."""

    def __init__(self, msg_type) -> None:
        super().__init__(f"Unknown message type: {msg_type}")
        self.msg_type = msg_type


class MessageValidationError(SignalingError):
    """Raised when a known message type is missing required fields."""
    pass


class InvalidRoomError(SignalingError):
    """Raised when a room id is missing or empty after trimming."""

    def __init__(self, message: str = "Room ID is required") -> None:
        super().__init__(message)


class RoomFullError(SignalingError):
    """Raised when joining a room that already holds two members."""

    def __init__(self, room_id: str) -> None:
        super().__init__("Room is full")
        self.room_id = room_id


class IdentityResolutionError(SignalingError):
    """Raised when the user directory cannot resolve an auth request."""
    pass
