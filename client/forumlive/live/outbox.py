"""Pending outbox: messages composed while offline.

Entries are replayed in the order they were queued once connectivity
returns. The outbox lives in memory; it is written to the local store only
when the client is about to be discarded, and read back (then deleted from
the store) on the next start, so a persisted outbox is restored at most once.
"""
import logging
from typing import List

from pydantic import ValidationError

from ..api.schemas import SendMessageRequest
from ..storage import OUTBOX_KEY, LocalStore

logger = logging.getLogger(__name__)


class PendingOutbox:
    """Ordered queue of unsent messages."""

    def __init__(self) -> None:
        self._entries: List[SendMessageRequest] = []

    def enqueue(self, message: SendMessageRequest) -> None:
        self._entries.append(message)
        logger.info(f"Queued message for forum {message.forumId} ({len(self._entries)} pending)")

    def drain(self) -> List[SendMessageRequest]:
        """Remove and return every entry, oldest first."""
        entries, self._entries = self._entries, []
        return entries

    @property
    def entries(self) -> List[SendMessageRequest]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    # -------------------------------------------------------------------------
    # Page-discard persistence
    # -------------------------------------------------------------------------

    def persist(self, store: LocalStore) -> bool:
        """Write a non-empty outbox to ``store``. Returns True if written."""
        if not self._entries:
            return False
        store.set(OUTBOX_KEY, [entry.model_dump() for entry in self._entries])
        logger.info(f"Persisted {len(self._entries)} pending messages")
        return True

    def restore(self, store: LocalStore) -> int:
        """Load a persisted outbox into memory and delete the durable copy.

        An unreadable copy is logged and deleted as well.

        Returns:
            Number of entries restored.
        """
        raw = store.get(OUTBOX_KEY)
        if raw is None:
            return 0
        store.remove(OUTBOX_KEY)

        try:
            if not isinstance(raw, list):
                raise TypeError(f"expected a list, got {type(raw).__name__}")
            restored = [SendMessageRequest.model_validate(item) for item in raw]
        except (TypeError, ValidationError) as e:
            logger.error(f"Failed to restore pending messages: {e}")
            return 0

        self._entries.extend(restored)
        logger.info(f"Restored {len(restored)} pending messages")
        return len(restored)
