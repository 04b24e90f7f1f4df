"""
Wire codec for signaling frames.

Inbound frames are parsed into a tagged union keyed on ``type`` and validated
before any dispatch. Outbound frames are plain dicts built by the helpers at
the bottom of this module.
"""
import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from duolink.core.signaling.errors import (
    MalformedFrameError,
    MessageValidationError,
    UnknownMessageTypeError,
)

# Inbound types
JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
PING = "ping"
AUTH = "auth"
HEARTBEAT_ACK = "heartbeat-ack"

# Outbound-only types
CONNECTION_ESTABLISHED = "connection-established"
ROOM_JOINED = "room-joined"
ROOM_READY = "room-ready"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
ERROR = "error"
PONG = "pong"
AUTH_SUCCESS = "auth-success"
SERVER_SHUTDOWN = "server-shutdown"
HEARTBEAT = "heartbeat"

INBOUND_TYPES = frozenset({
    JOIN_ROOM, LEAVE_ROOM, OFFER, ANSWER, ICE_CANDIDATE, PING, AUTH, HEARTBEAT_ACK,
})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    room_id: Optional[str] = Field(default=None, alias="roomId")

    @field_validator("room_id", mode="before")
    @classmethod
    def normalize_room_id(cls, v):
        """Trim room ids; blank becomes None. Numbers are accepted as ids."""
        if v is None:
            return None
        if isinstance(v, bool) or not isinstance(v, (str, int)):
            raise ValueError("roomId must be a string")
        v = str(v).strip()
        return v or None


class JoinRoom(_Inbound):
    type: Literal["join-room"]


class LeaveRoom(_Inbound):
    type: Literal["leave-room"]


class Offer(_Inbound):
    type: Literal["offer"]
    offer: Dict[str, Any]


class Answer(_Inbound):
    type: Literal["answer"]
    answer: Dict[str, Any]


class IceCandidate(_Inbound):
    type: Literal["ice-candidate"]
    # null marks end-of-candidates and is relayed as-is
    candidate: Any


class Ping(_Inbound):
    type: Literal["ping"]


class HeartbeatAck(_Inbound):
    type: Literal["heartbeat-ack"]


class Auth(_Inbound):
    type: Literal["auth"]
    user_id: Union[int, str] = Field(alias="userId")

    @field_validator("user_id")
    @classmethod
    def require_user_id(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("userId must not be empty")
        return v


InboundMessage = Annotated[
    Union[JoinRoom, LeaveRoom, Offer, Answer, IceCandidate, Ping, HeartbeatAck, Auth],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundMessage)

# Field that carries the negotiation payload for each relayed type
RELAY_FIELDS = {
    OFFER: "offer",
    ANSWER: "answer",
    ICE_CANDIDATE: "candidate",
}


def parse_frame(raw: Union[str, bytes]) -> InboundMessage:
    """
    Parse one inbound text frame.

    Raises:
        MalformedFrameError: payload is not a JSON object
        UnknownMessageTypeError: ``type`` is missing or not handled
        MessageValidationError: a known type lacks required fields
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
        raise MalformedFrameError()
    if not isinstance(data, dict):
        raise MalformedFrameError()
    msg_type = data.get("type")
    if msg_type not in INBOUND_TYPES:
        raise UnknownMessageTypeError(msg_type)
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise MessageValidationError(_describe_validation_error(msg_type, e))


def _describe_validation_error(msg_type: str, exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = first.get("loc") or ()
    field = loc[-1] if loc else "frame"
    if first.get("type") == "missing":
        return f"Invalid {msg_type} message: {field} is required"
    return f"Invalid {msg_type} message: {field}: {first.get('msg')}"


# Outbound frames

def connection_established(connection_id: str) -> Dict[str, Any]:
    return {"type": CONNECTION_ESTABLISHED, "connectionId": connection_id}


def room_joined(room_id: str, participant_count: int) -> Dict[str, Any]:
    return {"type": ROOM_JOINED, "roomId": room_id, "participantCount": participant_count}


def room_ready(room_id: str, participant_count: int, initiator: str) -> Dict[str, Any]:
    return {
        "type": ROOM_READY,
        "roomId": room_id,
        "participantCount": participant_count,
        "initiator": initiator,
    }


def user_joined(user_id: str, participant_count: int) -> Dict[str, Any]:
    return {"type": USER_JOINED, "userId": user_id, "participantCount": participant_count}


def user_left(user_id: str, participant_count: int) -> Dict[str, Any]:
    return {"type": USER_LEFT, "userId": user_id, "participantCount": participant_count}


def relayed(msg_type: str, payload: Any, from_user_id: str) -> Dict[str, Any]:
    """Build the frame forwarded to the peer for offer/answer/ice-candidate."""
    return {"type": msg_type, RELAY_FIELDS[msg_type]: payload, "fromUserId": from_user_id}


def error(message: str) -> Dict[str, Any]:
    return {"type": ERROR, "message": message}


def pong() -> Dict[str, Any]:
    return {"type": PONG, "ts": _now()}


def heartbeat() -> Dict[str, Any]:
    return {"type": HEARTBEAT, "ts": _now()}


def auth_success(user_id: int, username: str, display_name: Optional[str]) -> Dict[str, Any]:
    return {
        "type": AUTH_SUCCESS,
        "userId": user_id,
        "username": username,
        "displayName": display_name,
    }


def server_shutdown(message: str = "Server is shutting down") -> Dict[str, Any]:
    return {"type": SERVER_SHUTDOWN, "message": message}
