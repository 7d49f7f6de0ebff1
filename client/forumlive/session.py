"""Forum client controller.

ForumApp owns one signed-in session at a time and exposes the operations a
front end wires to its screens: sign in/out, forum discovery, room
join/leave, message send/edit/delete, typing, connectivity and page
lifecycle.

Session boundaries:
    - A ClientContext, LiveStateReconciler and PushChannel are created when a
      session starts (sign-in or restore) and discarded on sign-out.
    - Sign-out closes the push channel and cancels every pending timer, so no
      reconnect or typing signal outlives the session.

Optimistic actions:
    - send: the composer is cleared and disabled while the request is in
      flight; on failure the text is put back. The sent message itself is
      shown when the push channel echoes it (or on the next reload).
    - edit/delete: the local message is patched/removed only after the
      service confirms. The echo that follows is a no-op in the reconciler.
    - offline send: the message goes to the pending outbox and is replayed in
      order when connectivity returns.
"""
import logging
import time
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .api.client import ApiResponseError, ForumApiClient, ForumApiError
from .api.schemas import Forum, SendMessageRequest, User
from .config import AppConfig
from .live.channel import PushChannel
from .live.outbox import PendingOutbox
from .live.reconciler import LiveStateReconciler
from .live.scheduler import Scheduler
from .live.state import ClientContext
from .live.typing_indicator import TypingBroadcaster
from .notify import LoggingNotifier, Notifier, ToastLevel
from .storage import SESSION_KEY, LocalStore

logger = logging.getLogger(__name__)

ALL_TOPICS = "all"
TRENDING_TOPIC = "trending"


class Profile(BaseModel):
    """Profile screen data for the signed-in user."""
    displayName: str = Field(default="Unknown User")
    aboutMe: str = Field(default="No bio available")
    interests: List[str] = Field(default_factory=list)
    messageCount: int = 0
    discussionsJoined: int = 0


def _failure_text(action: str, error: ForumApiError) -> str:
    """User-facing text for a failed request.

    Server-reported errors are shown verbatim; transport and parse failures
    get a generic retry hint.
    """
    if isinstance(error, ApiResponseError):
        return f"{action}: {error.error}"
    return f"{action}. Please try again."


class ForumApp:
    """Client controller for the forum service.

    Args:
        config: Loaded application config.
        api: API client (built from ``config.api`` when omitted).
        store: Durable local store (built from ``config.storage`` when omitted).
        notifier: Front-end hook for alerts, toasts and questions.
        scheduler: Timer/task owner (a fresh one when omitted).
        clock: Monotonic clock for the away-refresh check and typing TTL.
    """

    def __init__(
        self,
        config: AppConfig,
        api: Optional[ForumApiClient] = None,
        store: Optional[LocalStore] = None,
        notifier: Optional[Notifier] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.api = api or ForumApiClient(config.api.base_url, timeout=config.api.timeout_seconds)
        self.store = store if store is not None else LocalStore(config.storage.path)
        self.notifier = notifier or LoggingNotifier()
        self.scheduler = scheduler or Scheduler()
        self.clock = clock

        self.online = True
        self.outbox = PendingOutbox()
        self.typing = TypingBroadcaster(self.api, self.scheduler, config.typing.idle_seconds)

        self.context: Optional[ClientContext] = None
        self.reconciler: Optional[LiveStateReconciler] = None
        self.channel: Optional[PushChannel] = None
        self._hidden_at: Optional[float] = None

    # =========================================================================
    # Startup / shutdown
    # =========================================================================

    async def start(self) -> Optional[User]:
        """Restore a persisted outbox and session, as on page load."""
        self.outbox.restore(self.store)
        return await self.restore_session()

    async def aclose(self) -> None:
        """Release resources without signing out (the session stays persisted)."""
        self._teardown()
        await self.api.aclose()

    @property
    def signed_in(self) -> bool:
        return self.context is not None

    @property
    def user(self) -> Optional[User]:
        return self.context.user if self.context is not None else None

    # =========================================================================
    # Session
    # =========================================================================

    async def sign_in(
        self, display_name: str, about_me: str = "", interests: Optional[List[str]] = None
    ) -> Optional[User]:
        """Create a participant on the service and start a session."""
        display_name = display_name.strip()
        if not display_name:
            return None

        try:
            user = await self.api.create_session(display_name, about_me.strip(), interests or [])
        except ForumApiError as e:
            self.notifier.alert(_failure_text("Sign-in failed", e))
            return None

        self.store.set(SESSION_KEY, user.model_dump())
        logger.info(f"Signed in as {user.displayName} ({user.id})")
        await self._start_session(user)
        return user

    async def restore_session(self) -> Optional[User]:
        """Revalidate the persisted identity; drop it if the service rejects it."""
        saved = self.store.get(SESSION_KEY)
        if not saved:
            return None

        user_id = saved.get("id") if isinstance(saved, dict) else None
        if not user_id:
            logger.error(f"Discarding unreadable saved session: {saved!r}")
            self.store.remove(SESSION_KEY)
            return None

        try:
            user = await self.api.fetch_session(str(user_id))
        except ForumApiError as e:
            logger.info(f"Session invalid, removing saved identity: {e}")
            self.store.remove(SESSION_KEY)
            return None

        logger.info(f"Session restored for {user.displayName} ({user.id})")
        await self._start_session(user)
        return user

    async def sign_out(self) -> None:
        """End the session on the service and locally.

        Local teardown happens even when the service call fails.
        """
        if self.context is not None:
            try:
                await self.api.delete_session(self.context.user.id)
            except ForumApiError as e:
                logger.error(f"Failed to sign out user: {e}")

        self.store.remove(SESSION_KEY)
        self._teardown()
        logger.info("Signed out")

    async def _start_session(self, user: User) -> None:
        self._teardown()
        self.context = ClientContext(
            user=user,
            typing_ttl_seconds=self.config.typing.ttl_seconds,
            clock=self.clock,
        )
        self.reconciler = LiveStateReconciler(self.context)
        context = self.context
        self.channel = PushChannel(
            http=self.api.http,
            user_id=user.id,
            on_event=self.reconciler.apply,
            scheduler=self.scheduler,
            session_active=lambda: self.context is context,
            reconnect_delay=self.config.push.reconnect_delay_seconds,
        )
        self.channel.connect()
        await self.load_forums()

    def _teardown(self) -> None:
        if self.channel is not None:
            self.channel.close()
        self.typing.cancel()
        self.scheduler.cancel_all()
        self.channel = None
        self.reconciler = None
        self.context = None

    # =========================================================================
    # Forums
    # =========================================================================

    async def load_forums(self, topic: str = ALL_TOPICS) -> List[Forum]:
        """Reload the forum list, optionally filtered by topic or ``trending``.

        On failure the cached list is kept.
        """
        context, reconciler = self.context, self.reconciler
        if reconciler is None:
            return []
        try:
            forums = await self.api.list_forums(
                topic=None if topic == ALL_TOPICS else topic,
                trending=topic == TRENDING_TOPIC,
            )
        except ForumApiError as e:
            logger.error(f"Failed to load forums: {e}")
            return list(context.forums)

        if self.context is not context:
            logger.info("Session ended while loading forums; discarding listing")
            return forums
        reconciler.set_forums(forums)
        return forums

    def forums_for_topic(self, topic: str = ALL_TOPICS) -> List[Forum]:
        """Cached forums matching ``topic`` (``all`` returns every forum)."""
        if self.context is None:
            return []
        if topic == ALL_TOPICS:
            return list(self.context.forums)
        return [forum for forum in self.context.forums if forum.topic == topic]

    async def featured_forums(self) -> List[Forum]:
        """Live forums (at least one participant), capped at ``ui.featured_limit``."""
        try:
            forums = await self.api.list_forums()
        except ForumApiError as e:
            logger.error(f"Failed to load featured forums: {e}")
            return []
        live = [forum for forum in forums if forum.is_live]
        return live[: self.config.ui.featured_limit]

    async def search_forums(self, term: str) -> List[Forum]:
        """Case-insensitive match on title, topic or host over the cached list.

        An empty term returns the featured forums instead.
        """
        term = term.strip().lower()
        if not term:
            return await self.featured_forums()
        if self.context is None:
            return []
        return [
            forum for forum in self.context.forums
            if term in forum.title.lower()
            or term in forum.topic.lower()
            or term in forum.host.lower()
        ]

    async def create_forum(self, title: str, topic: str) -> Optional[Forum]:
        """Create a discussion and join it."""
        title = title.strip()
        if not title or self.context is None:
            return None
        try:
            forum = await self.api.create_forum(title, topic, self.context.user.id)
        except ForumApiError as e:
            self.notifier.alert(_failure_text("Failed to create discussion", e))
            return None

        await self.join_forum(forum)
        return forum

    # =========================================================================
    # Room membership
    # =========================================================================

    async def join_forum(self, forum: Union[Forum, str]) -> bool:
        """Enter a forum and load its messages from the service."""
        context, reconciler = self.context, self.reconciler
        if context is None:
            return False
        forum_id = forum.id if isinstance(forum, Forum) else forum

        try:
            joined = await self.api.join_forum(forum_id, context.user.id)
        except ForumApiError as e:
            self.notifier.alert(_failure_text("Failed to join forum", e))
            return False

        if self.context is not context:
            logger.info(f"Session ended while joining {forum_id}; not entering the room")
            return False
        reconciler.enter_room(joined)
        context.discussions_joined.add(forum_id)
        logger.info(f"Joined forum {joined.title} ({joined.id}, {joined.participants} participants)")
        await self.load_messages(joined.id)
        return True

    async def load_messages(self, forum_id: str) -> None:
        """Replace the room's message view with the service's listing."""
        context, reconciler = self.context, self.reconciler
        if reconciler is None:
            return
        try:
            messages = await self.api.list_messages(forum_id)
        except ForumApiError as e:
            logger.error(f"Failed to load messages: {e}")
            if self.context is context and context.room_id == forum_id:
                reconciler.add_notice("Failed to load messages. Please try again.")
            return

        if self.context is not context or context.room_id != forum_id:
            logger.info(f"Discarding messages for {forum_id}; no longer the active room")
            return
        reconciler.load_room(messages)

    async def exit_room(self) -> None:
        """Leave the active room and go back to the forum list."""
        context, reconciler = self.context, self.reconciler
        if context is None or context.room is None:
            return
        forum_id = context.room.forum_id
        try:
            await self.api.leave_forum(forum_id, context.user.id)
        except ForumApiError as e:
            logger.error(f"Failed to leave forum: {e}")

        if self.context is not context:
            return
        reconciler.leave_room()
        await self.load_forums()

    # =========================================================================
    # Messages
    # =========================================================================

    async def on_input(self, text: str) -> None:
        """Composer keystroke: store the text and broadcast typing."""
        if self.context is None:
            return
        self.context.composer.text = text
        if self.context.room is None:
            return
        await self.typing.keystroke(self.context.room.forum_id, self.context.user.id)

    async def send_message(self, text: Optional[str] = None) -> bool:
        """Send the composer text (or ``text``) to the active room.

        Returns:
            True if the service accepted the message.
        """
        context = self.context
        if context is None:
            return False
        composer = context.composer
        if text is not None:
            composer.text = text

        body = composer.text.strip()
        if not body or context.room is None:
            return False

        request = SendMessageRequest(forumId=context.room.forum_id, userId=context.user.id, text=body)
        composer.text = ""

        if not self.online:
            self.outbox.enqueue(request)
            self.notifier.toast("Message will be sent when connection is restored.", ToastLevel.INFO)
            return False

        composer.disabled = True
        try:
            await self.api.send_message(request)
        except ForumApiError as e:
            logger.error(f"Failed to send message: {e}")
            composer.text = body
            self.notifier.toast(_failure_text("Failed to send message", e), ToastLevel.ERROR)
            return False
        finally:
            composer.disabled = False

        context.message_count += 1
        return True

    async def edit_message(self, message_id: str, new_text: Optional[str] = None) -> bool:
        """Edit one of our messages; asks the notifier when ``new_text`` is None."""
        context, reconciler = self.context, self.reconciler
        if context is None or context.room is None:
            return False
        message = context.room.get(message_id)
        if message is None:
            return False
        if message.userId != context.user.id:
            logger.warning(f"Refusing to edit message {message_id} owned by {message.userId}")
            return False

        if new_text is None:
            new_text = self.notifier.prompt("Edit your message:", message.text)
        if not new_text or new_text.strip() == message.text.strip():
            return False
        new_text = new_text.strip()

        try:
            await self.api.edit_message(message_id, context.user.id, new_text)
        except ForumApiError as e:
            self.notifier.alert(_failure_text("Failed to edit message", e))
            return False

        if self.context is context:
            reconciler.patch_message(message_id, new_text)
        return True

    async def delete_message(self, message_id: str, confirmed: Optional[bool] = None) -> bool:
        """Delete one of our messages; asks the notifier when ``confirmed`` is None."""
        context, reconciler = self.context, self.reconciler
        if context is None or context.room is None:
            return False
        message = context.room.get(message_id)
        if message is not None and message.userId != context.user.id:
            logger.warning(f"Refusing to delete message {message_id} owned by {message.userId}")
            return False

        if confirmed is None:
            confirmed = self.notifier.confirm("Are you sure you want to delete this message?")
        if not confirmed:
            return False

        try:
            await self.api.delete_message(message_id, context.user.id)
        except ForumApiError as e:
            self.notifier.alert(_failure_text("Failed to delete message", e))
            return False

        if self.context is context:
            reconciler.remove_message(message_id)
        return True

    # =========================================================================
    # Connectivity
    # =========================================================================

    def go_offline(self) -> None:
        self.online = False
        self.notifier.toast(
            "You are offline. Messages will be sent when connection is restored.",
            ToastLevel.WARNING,
        )

    async def go_online(self) -> int:
        """Mark the client online and replay the outbox in order.

        Returns:
            Number of queued messages replayed (successful or not).
        """
        self.online = True
        self.notifier.toast("Connection restored", ToastLevel.SUCCESS)

        pending = self.outbox.drain()
        for request in pending:
            try:
                await self.api.send_message(request)
            except ForumApiError as e:
                logger.error(f"Failed to send queued message to {request.forumId}: {e}")
                continue
            if self.context is not None:
                self.context.message_count += 1
        if pending:
            logger.info(f"Replayed {len(pending)} queued messages")
        return len(pending)

    async def check_connectivity(self) -> Dict[str, bool]:
        return await self.api.check_connectivity()

    # =========================================================================
    # Page lifecycle
    # =========================================================================

    def page_hide(self) -> None:
        """The client is about to be discarded: persist a non-empty outbox."""
        self.outbox.persist(self.store)

    def page_hidden(self) -> None:
        self._hidden_at = self.clock()

    async def page_visible(self) -> bool:
        """Refresh forums and room messages after a long absence.

        Returns:
            True if a refresh ran.
        """
        hidden_at, self._hidden_at = self._hidden_at, None
        if hidden_at is None or self.context is None:
            return False
        if self.clock() - hidden_at <= self.config.ui.refresh_after_away_seconds:
            return False

        await self.load_forums()
        if self.context is not None and self.context.room is not None:
            await self.load_messages(self.context.room.forum_id)
        return True

    # =========================================================================
    # Profile
    # =========================================================================

    def profile(self) -> Optional[Profile]:
        if self.context is None:
            return None
        user = self.context.user
        return Profile(
            displayName=user.displayName or "Unknown User",
            aboutMe=user.aboutMe or "No bio available",
            interests=list(user.interests),
            messageCount=self.context.message_count,
            discussionsJoined=len(self.context.discussions_joined),
        )
