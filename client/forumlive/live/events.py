"""Push-channel event records.

Every record on ``/api/sse`` is a JSON object tagged with ``type``. This
module turns raw stream lines into records and records into typed payload
models; the reconciler decides what each one does to local state.
"""
import json
import logging
from enum import Enum
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, Field, field_validator

from ..api.schemas import Forum, Message

logger = logging.getLogger(__name__)

# SSE fields other than data carry nothing the client uses
_IGNORED_SSE_FIELDS = ("event:", "id:", "retry:")


class EventType(str, Enum):
    """Recognized push event types.

    Attributes:
        MESSAGE: A new message in a room.
        MESSAGE_EDITED: An existing message's text changed.
        MESSAGE_DELETED: A message was removed.
        USER_JOINED: A participant entered a room.
        USER_LEFT: A participant left a room.
        TYPING: A participant started or stopped typing.
        FORUM_CREATED: A new forum was created (not room-scoped).
    """
    MESSAGE = "message"
    MESSAGE_EDITED = "message_edited"
    MESSAGE_DELETED = "message_deleted"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    TYPING = "typing"
    FORUM_CREATED = "forum_created"


# Event types that only apply to the room they name
ROOM_SCOPED = frozenset({
    EventType.MESSAGE,
    EventType.MESSAGE_EDITED,
    EventType.MESSAGE_DELETED,
    EventType.USER_JOINED,
    EventType.USER_LEFT,
    EventType.TYPING,
})


# =============================================================================
# Payload models
# =============================================================================


class ServerEvent(BaseModel):
    """Fields shared by every record.

    Attributes:
        type: Event tag.
        roomId: Forum the event belongs to (room-scoped events only).
        seq: Optional per-room sequence number; higher is newer.
    """
    type: str = Field(..., min_length=1)
    roomId: Optional[str] = None
    seq: Optional[int] = None

    @field_validator("roomId", mode="before")
    @classmethod
    def _room_id_to_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class MessageEvent(ServerEvent):
    message: Message


class MessageDeletedEvent(ServerEvent):
    messageId: str

    @field_validator("messageId", mode="before")
    @classmethod
    def _message_id_to_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class PresenceEvent(ServerEvent):
    """``user_joined`` / ``user_left``."""
    userName: Optional[str] = None
    participants: Optional[int] = None


class TypingEvent(ServerEvent):
    roomId: str
    userId: str
    userName: Optional[str] = None
    isTyping: bool = False

    @field_validator("userId", mode="before")
    @classmethod
    def _user_id_to_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ForumCreatedEvent(ServerEvent):
    forum: Forum


PAYLOAD_MODELS: Dict[EventType, Type[ServerEvent]] = {
    EventType.MESSAGE: MessageEvent,
    EventType.MESSAGE_EDITED: MessageEvent,
    EventType.MESSAGE_DELETED: MessageDeletedEvent,
    EventType.USER_JOINED: PresenceEvent,
    EventType.USER_LEFT: PresenceEvent,
    EventType.TYPING: TypingEvent,
    EventType.FORUM_CREATED: ForumCreatedEvent,
}


# =============================================================================
# Stream framing
# =============================================================================


def parse_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one line of the push stream.

    Accepts bare newline-delimited JSON as well as SSE framing
    (``data: {...}``). Blank lines, SSE comments (``: ping``) and other SSE
    fields return None. Unparsable JSON is logged and returns None.
    """
    line = line.strip()
    if not line or line.startswith(":") or line.startswith(_IGNORED_SSE_FIELDS):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
        if not line:
            return None

    try:
        record = json.loads(line)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError is a ValueError; pathological nesting raises RecursionError.
        logger.error(f"Failed to parse push message: {e}")
        return None

    if not isinstance(record, dict):
        logger.error(f"Invalid server event data: {record!r}")
        return None
    return record
