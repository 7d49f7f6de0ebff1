"""Per-session client state.

ClientContext is built when a session starts and discarded on sign-out; it
replaces the single global state object a browser client would keep. The
active room lives in a RoomView, so entering or leaving a room swaps the
message list and typing set together.
"""
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set, Union

from ..api.schemas import Forum, Message, User
from .typing_indicator import TypingSet


@dataclass
class SystemNotice:
    """Synthetic room entry such as "Ann joined the discussion"."""
    text: str

    @property
    def display_text(self) -> str:
        return self.text


RoomEntry = Union[Message, SystemNotice]


@dataclass
class Composer:
    """The message input box."""
    text: str = ""
    disabled: bool = False


class RoomView:
    """The forum the session is inside, with its rendered entries.

    Attributes:
        forum: Forum record returned by the join call; its participant count
            tracks presence events.
        entries: Messages and system notices in display order.
        typing: Participants typing in this room.
        last_seq: Highest push sequence number applied to this room.
    """

    def __init__(self, forum: Forum, typing: Optional[TypingSet] = None) -> None:
        self.forum = forum
        self.entries: List[RoomEntry] = []
        self.typing = typing if typing is not None else TypingSet()
        self.last_seq: Optional[int] = None

    @property
    def forum_id(self) -> str:
        return self.forum.id

    @property
    def participants(self) -> int:
        return self.forum.participants

    def messages(self) -> List[Message]:
        return [entry for entry in self.entries if isinstance(entry, Message)]

    def index_of(self, message_id: str) -> Optional[int]:
        for i, entry in enumerate(self.entries):
            if isinstance(entry, Message) and entry.id == message_id:
                return i
        return None

    def get(self, message_id: str) -> Optional[Message]:
        index = self.index_of(message_id)
        return None if index is None else self.entries[index]

    def rendered(self) -> List[str]:
        """Display text of every entry, in order."""
        return [entry.display_text for entry in self.entries]


@dataclass
class ClientContext:
    """Everything the client knows for one signed-in session.

    Attributes:
        user: The signed-in participant.
        forums: Cached forum list, newest first after ``forum_created``.
        room: Active room, or None when not inside a forum.
        message_count: Messages this session sent successfully.
        discussions_joined: Ids of forums joined during this session.
        composer: Message input state.
        typing_ttl_seconds: TTL applied to each room's typing set.
    """
    user: User
    forums: List[Forum] = field(default_factory=list)
    room: Optional[RoomView] = None
    message_count: int = 0
    discussions_joined: Set[str] = field(default_factory=set)
    composer: Composer = field(default_factory=Composer)
    typing_ttl_seconds: Optional[float] = None
    clock: Optional[Callable[[], float]] = None

    @property
    def room_id(self) -> Optional[str]:
        return self.room.forum_id if self.room is not None else None

    def new_typing_set(self) -> TypingSet:
        if self.clock is not None:
            return TypingSet(self.typing_ttl_seconds, clock=self.clock)
        return TypingSet(self.typing_ttl_seconds)
