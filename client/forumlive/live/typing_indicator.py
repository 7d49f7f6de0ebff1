"""Typing indicators: who is typing in the current room, and our own broadcast.

TypingSet is the receive side. Entries are added and removed only by
explicit start/stop signals from the push channel. When a TTL is configured,
entries older than the TTL are also evicted the next time the set is read,
which clears indicators whose stop signal was lost.

TypingBroadcaster is the send side: a debounce with a leading edge that is
never suppressed. Every keystroke sends "start" and re-arms a single "stop"
timer, so a burst of keystrokes produces one start per keystroke and exactly
one stop, ``idle_seconds`` after the last keystroke.
"""
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from ..api.client import ForumApiClient, ForumApiError
from ..formatting import typing_sentence
from .scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)

DEFAULT_TYPING_NAME = "Someone"


class TypingSet:
    """Participants currently typing in the active room.

    Args:
        ttl_seconds: Evict entries not refreshed within this window. ``None``
            disables eviction.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # userId -> (displayName, last refresh)
        self._entries: Dict[str, Tuple[str, float]] = {}

    def upsert(self, user_id: str, name: Optional[str]) -> None:
        self._entries[user_id] = (name or DEFAULT_TYPING_NAME, self._clock())

    def remove(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self) -> None:
        if self.ttl_seconds is None:
            return
        cutoff = self._clock() - self.ttl_seconds
        expired = [uid for uid, (_, seen) in self._entries.items() if seen < cutoff]
        for uid in expired:
            logger.debug(f"Typing entry for {uid} expired")
            del self._entries[uid]

    def names(self) -> List[str]:
        """Display names in the order participants started typing."""
        self._evict_expired()
        return [name for name, _ in self._entries.values()]

    def as_dict(self) -> Dict[str, str]:
        self._evict_expired()
        return {uid: name for uid, (name, _) in self._entries.items()}

    def sentence(self) -> str:
        """Indicator text, e.g. ``"Ann and Bo are typing..."``; empty when idle."""
        return typing_sentence(self.names())

    def __len__(self) -> int:
        return len(self.names())

    def __contains__(self, user_id: str) -> bool:
        return user_id in self.as_dict()


class TypingBroadcaster:
    """Sends our own typing start/stop signals for the active room."""

    def __init__(
        self,
        api: ForumApiClient,
        scheduler: Scheduler,
        idle_seconds: float = 2.0,
    ) -> None:
        self.api = api
        self.scheduler = scheduler
        self.idle_seconds = idle_seconds
        self._stop_timer: Optional[Timer] = None

    async def keystroke(self, forum_id: str, user_id: str) -> None:
        """Handle one keystroke in the composer.

        Re-arms the stop timer before sending start, so the stop fires
        ``idle_seconds`` after this keystroke even if the start call is slow.
        """
        self.cancel()
        timer = self.scheduler.call_later(
            self.idle_seconds, lambda: self._send_stop(timer, forum_id, user_id)
        )
        self._stop_timer = timer
        try:
            await self.api.start_typing(forum_id, user_id)
        except ForumApiError as e:
            logger.error(f"Failed to send typing indicator: {e}")

    async def _send_stop(self, timer: Timer, forum_id: str, user_id: str) -> None:
        # A later keystroke may already have armed the next timer.
        if self._stop_timer is timer:
            self._stop_timer = None
        try:
            await self.api.stop_typing(forum_id, user_id)
        except ForumApiError as e:
            logger.error(f"Failed to stop typing indicator: {e}")

    def cancel(self) -> None:
        """Drop a pending stop without sending it."""
        if self._stop_timer is not None:
            self._stop_timer.cancel()
            self._stop_timer = None

    @property
    def stop_pending(self) -> bool:
        return self._stop_timer is not None
