"""Push channel: the long-lived ``/api/sse`` stream.

State machine:

    DISCONNECTED --connect()--> CONNECTING --2xx--> OPEN
         ^                          |                 |
         +------ error / end -------+-----------------+

Any transport error, non-success status, or end of stream returns the
channel to DISCONNECTED. If the session is still active at that moment, one
reconnect is scheduled after a fixed delay; the session is checked again
when the timer fires. There is no backoff and no retry cap.

Only one stream is ever open: ``connect()`` closes the previous reader
before starting a new one, and ``close()`` stops the reader and cancels any
pending reconnect.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from .events import parse_line
from .scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)

SSE_PATH = "/api/sse"


class ChannelState(str, Enum):
    """Connection state of the push channel."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"


class PushChannel:
    """Reads push records and hands each one to ``on_event``.

    Args:
        http: httpx client rooted at the service base URL.
        user_id: Session user id, sent as the ``userId`` query parameter.
        on_event: Called with each decoded record, in arrival order.
        scheduler: Owner of the reconnect timer and the reader task.
        session_active: Returns True while the session that owns this
            channel is signed in.
        reconnect_delay: Seconds to wait before reconnecting after an error.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        user_id: str,
        on_event: Callable[[Dict[str, Any]], Any],
        scheduler: Scheduler,
        session_active: Callable[[], bool],
        reconnect_delay: float = 5.0,
    ) -> None:
        self.http = http
        self.user_id = user_id
        self.on_event = on_event
        self.scheduler = scheduler
        self.session_active = session_active
        self.reconnect_delay = reconnect_delay

        self.state = ChannelState.DISCONNECTED
        self.connection_time: Optional[float] = None
        self.connect_attempts = 0
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[Timer] = None
        self._closed = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def connect(self) -> None:
        """Open a fresh stream, replacing any existing one."""
        if self._closed:
            return
        self._cancel_reconnect()
        self._stop_reader()

        self.connect_attempts += 1
        self.state = ChannelState.CONNECTING
        self._reader = self.scheduler.spawn(self._run(time.monotonic()))

    def close(self) -> None:
        """Stop reading and never reconnect; used on sign-out."""
        self._closed = True
        self._cancel_reconnect()
        self._stop_reader()
        self.state = ChannelState.DISCONNECTED
        logger.info("Push channel closed")

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def _stop_reader(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    # =========================================================================
    # Reader
    # =========================================================================

    async def _run(self, started: float) -> None:
        try:
            async with self.http.stream(
                "GET", SSE_PATH, params={"userId": self.user_id}, timeout=None
            ) as response:
                if response.status_code != 200:
                    raise ConnectionError(f"push channel returned HTTP {response.status_code}")

                self.state = ChannelState.OPEN
                self.connection_time = time.monotonic() - started
                logger.info(f"Push channel established in {self.connection_time * 1000:.0f}ms")

                async for line in response.aiter_lines():
                    record = parse_line(line)
                    if record is not None:
                        self._dispatch(record)

            raise ConnectionError("push channel stream ended")
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, ConnectionError) as e:
            logger.error(f"Push channel connection error: {e}")
            self._on_error()
        except Exception as e:
            logger.error(f"Push channel reader failed: {e}", exc_info=True)
            self._on_error()

    def _dispatch(self, record: Dict[str, Any]) -> None:
        try:
            self.on_event(record)
        except Exception as e:
            logger.error(f"Error handling server event: {e}", exc_info=True)

    def _on_error(self) -> None:
        self.state = ChannelState.DISCONNECTED
        if self._closed or not self.session_active():
            return
        self._cancel_reconnect()
        timer = self.scheduler.call_later(self.reconnect_delay, lambda: self._reconnect(timer))
        self._reconnect_timer = timer
        logger.info(f"Reconnecting push channel in {self.reconnect_delay:.0f}s")

    async def _reconnect(self, timer: Timer) -> None:
        # A timer that fired after being replaced or cancelled is stale.
        if self._reconnect_timer is not timer:
            return
        self._reconnect_timer = None
        if self._closed or not self.session_active():
            logger.info("Session ended; not reconnecting push channel")
            return
        self.connect()
