"""Live state reconciler.

Translates push-channel records and confirmed local actions into mutations
of the session's forum list, room messages and typing set.

Rules:
    - Room-scoped records apply only when their ``roomId`` is the active
      room; records for any other room are dropped, not buffered.
    - ``forum_created`` is global and prepends to the forum list.
    - Edits and deletes address messages by id and are no-ops when the id is
      absent, so an echo of a change already applied locally, or a duplicate
      delivery, leaves state as it was.
    - A repeated ``message`` record for an id already shown replaces that
      entry instead of appending a second copy.
    - When a room-scoped record carries ``seq``, anything at or below the
      last applied ``seq`` for the active room is discarded as stale.
    - Malformed records are logged and dropped; nothing here raises.

The reconciler is the only writer of ``ClientContext.room`` and
``ClientContext.forums``.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..api.schemas import Forum, Message
from .events import (
    PAYLOAD_MODELS,
    ROOM_SCOPED,
    EventType,
    ForumCreatedEvent,
    MessageDeletedEvent,
    MessageEvent,
    PresenceEvent,
    ServerEvent,
    TypingEvent,
)
from .state import ClientContext, RoomView, SystemNotice

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_NAME = "Someone"

ChangeListener = Callable[[str], None]


class LiveStateReconciler:
    """Applies events to a :class:`ClientContext`.

    Args:
        context: Session state to mutate.
    """

    def __init__(self, context: ClientContext) -> None:
        self.context = context
        self._listeners: List[ChangeListener] = []
        self._handlers: Dict[EventType, Callable[[Any], bool]] = {
            EventType.MESSAGE: self._on_message,
            EventType.MESSAGE_EDITED: self._on_message_edited,
            EventType.MESSAGE_DELETED: self._on_message_deleted,
            EventType.USER_JOINED: self._on_presence,
            EventType.USER_LEFT: self._on_presence,
            EventType.TYPING: self._on_typing,
            EventType.FORUM_CREATED: self._on_forum_created,
        }

    def subscribe(self, listener: ChangeListener) -> None:
        """Call ``listener(kind)`` after every state change."""
        self._listeners.append(listener)

    def _changed(self, kind: str) -> None:
        for listener in self._listeners:
            try:
                listener(kind)
            except Exception as e:
                logger.error(f"Change listener failed for {kind}: {e}")

    # =========================================================================
    # Push events
    # =========================================================================

    def apply(self, record: Any) -> bool:
        """Apply one push record.

        Args:
            record: Decoded JSON object from the push channel.

        Returns:
            True if local state changed.
        """
        if not isinstance(record, dict) or not record.get("type"):
            logger.error(f"Invalid server event data: {record!r}")
            return False

        try:
            event_type = EventType(record["type"])
        except ValueError:
            logger.info(f"Unknown event type: {record['type']}")
            return False

        try:
            event = PAYLOAD_MODELS[event_type].model_validate(record)
        except ValidationError as e:
            logger.error(f"Invalid {event_type.value} event: {e}")
            return False

        # Typing checks its room inside the handler.
        if event_type in ROOM_SCOPED and event_type != EventType.TYPING:
            if not self._accept(event):
                return False

        try:
            changed = self._handlers[event_type](event)
        except Exception as e:
            logger.error(f"Error handling server event {event_type.value}: {e}", exc_info=True)
            return False

        if changed:
            self._changed(event_type.value)
        return changed

    def _accept(self, event: ServerEvent) -> bool:
        """Room gate and sequence guard for room-scoped events."""
        room = self.context.room
        if room is None or event.roomId != room.forum_id:
            return False

        if event.seq is not None:
            if room.last_seq is not None and event.seq <= room.last_seq:
                logger.debug(
                    f"Dropping stale {event.type} for room {room.forum_id}: "
                    f"seq {event.seq} <= {room.last_seq}"
                )
                return False
            room.last_seq = event.seq
        return True

    def _on_message(self, event: MessageEvent) -> bool:
        room = self.context.room
        index = room.index_of(event.message.id)
        if index is not None:
            if room.entries[index] == event.message:
                return False
            room.entries[index] = event.message
        else:
            room.entries.append(event.message)
        return True

    def _on_message_edited(self, event: MessageEvent) -> bool:
        message = event.message
        return self._patch(message.id, message.text, timestamp=message.timestamp)

    def _on_message_deleted(self, event: MessageDeletedEvent) -> bool:
        return self._remove(event.messageId)

    def _on_presence(self, event: PresenceEvent) -> bool:
        name = event.userName or DEFAULT_PRESENCE_NAME
        verb = "joined" if event.type == EventType.USER_JOINED.value else "left"
        self._add_notice(f"{name} {verb} the discussion")
        self.context.room.forum.participants = event.participants or 0
        return True

    def _on_typing(self, event: TypingEvent) -> bool:
        if not self._accept(event):
            return False
        typing = self.context.room.typing
        if event.isTyping:
            typing.upsert(event.userId, event.userName)
            return True
        if event.userId not in typing:
            return False
        typing.remove(event.userId)
        return True

    def _on_forum_created(self, event: ForumCreatedEvent) -> bool:
        forums = self.context.forums
        if any(forum.id == event.forum.id for forum in forums):
            return False
        forums.insert(0, event.forum)
        return True

    # =========================================================================
    # Local mutations (joins, reloads, confirmed optimistic actions)
    # =========================================================================

    def set_forums(self, forums: List[Forum]) -> None:
        self.context.forums = list(forums)
        self._changed("forums")

    def enter_room(self, forum: Forum) -> RoomView:
        """Make ``forum`` the active room with an empty view."""
        self.context.room = RoomView(forum, typing=self.context.new_typing_set())
        self._changed("room")
        return self.context.room

    def load_room(self, messages: List[Message]) -> bool:
        """Replace the active room's entries with an authoritative listing.

        Returns:
            False if no room is active (the listing is discarded).
        """
        room = self.context.room
        if room is None:
            return False
        room.entries = list(messages)
        if not messages:
            room.entries.append(
                SystemNotice(f'Welcome to "{room.forum.title}"! Start the conversation.')
            )
        self._changed("messages")
        return True

    def leave_room(self) -> None:
        """Clear membership, messages and typing set together."""
        if self.context.room is None:
            return
        self.context.room.typing.clear()
        self.context.room = None
        self._changed("room")

    def add_notice(self, text: str) -> bool:
        if self._add_notice(text):
            self._changed("messages")
            return True
        return False

    def _add_notice(self, text: str) -> bool:
        room = self.context.room
        if room is None or not text:
            return False
        room.entries.append(SystemNotice(text))
        return True

    def patch_message(self, message_id: str, text: str) -> bool:
        """Set a message's text and mark it edited; no-op if absent or unchanged."""
        if self._patch(message_id, text):
            self._changed("messages")
            return True
        return False

    def _patch(
        self, message_id: str, text: str, timestamp: Optional[Any] = None
    ) -> bool:
        room = self.context.room
        if room is None:
            return False
        index = room.index_of(message_id)
        if index is None:
            return False

        current = room.entries[index]
        if current.text == text and current.edited:
            return False
        update: Dict[str, Any] = {"text": text, "edited": True}
        if timestamp is not None:
            update["timestamp"] = timestamp
        room.entries[index] = current.model_copy(update=update)
        return True

    def remove_message(self, message_id: str) -> bool:
        """Remove a message by id; no-op if it is not shown."""
        if self._remove(message_id):
            self._changed("messages")
            return True
        return False

    def _remove(self, message_id: str) -> bool:
        room = self.context.room
        if room is None:
            return False
        index = room.index_of(message_id)
        if index is None:
            return False
        del room.entries[index]
        return True
