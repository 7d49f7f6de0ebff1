"""Shared test fixtures and configuration for client tests."""
from typing import Awaitable, Callable, List, Tuple

import httpx
import pytest
import pytest_asyncio

from forumlive.api.client import ForumApiClient
from forumlive.api.schemas import Forum, User
from forumlive.config import AppConfig
from forumlive.live.reconciler import LiveStateReconciler
from forumlive.live.scheduler import Scheduler, Timer
from forumlive.live.state import ClientContext
from forumlive.notify import Notifier, ToastLevel
from forumlive.session import ForumApp
from forumlive.storage import LocalStore

from fake_forum_api import FakeForumService


class ManualScheduler(Scheduler):
    """Scheduler on a virtual clock; timers fire only from :meth:`advance`."""

    def __init__(self) -> None:
        super().__init__()
        self.now = 0.0
        self._queue: List[Tuple[float, int, Timer, Callable[[], Awaitable[None]]]] = []
        self._seq = 0

    def call_later(self, delay, callback):
        timer = Timer(delay)
        self._seq += 1
        self._queue.append((self.now + delay, self._seq, timer, callback))
        self._timers.add(timer)
        return timer

    def pending(self) -> List[Tuple[float, Timer]]:
        """(due time, timer) for every timer not yet fired or cancelled."""
        return [(due, timer) for due, _, timer, _ in sorted(self._queue, key=lambda e: e[:2])
                if not timer.cancelled]

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.now + seconds
        while True:
            due = sorted(
                (entry for entry in self._queue if entry[0] <= target and not entry[2].cancelled),
                key=lambda e: e[:2],
            )
            if not due:
                break
            entry = due[0]
            self._queue.remove(entry)
            self._timers.discard(entry[2])
            self.now = entry[0]
            await entry[3]()
            await self.drain()
        self._queue = [entry for entry in self._queue if not entry[2].cancelled]
        self.now = target


class RecordingNotifier(Notifier):
    """Notifier that records output and answers questions from presets."""

    def __init__(self) -> None:
        self.alerts: List[str] = []
        self.toasts: List[Tuple[str, ToastLevel]] = []
        self.prompt_answer = None
        self.confirm_answer = True
        self.prompts: List[str] = []

    def alert(self, message):
        self.alerts.append(message)

    def toast(self, message, level=ToastLevel.INFO):
        self.toasts.append((message, level))

    def prompt(self, message, default=""):
        self.prompts.append(message)
        return self.prompt_answer

    def confirm(self, message):
        return self.confirm_answer


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def fake_service():
    return FakeForumService()


@pytest_asyncio.fixture
async def api(fake_service):
    client = ForumApiClient("http://testserver", transport=httpx.ASGITransport(app=fake_service.app))
    yield client
    await client.aclose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "store.json")


@pytest_asyncio.fixture
async def forum_app(api, store, notifier, scheduler):
    app = ForumApp(AppConfig(), api=api, store=store, notifier=notifier, scheduler=scheduler)
    yield app
    app._teardown()


@pytest.fixture
def context():
    """Session context for user u1, not inside any room."""
    return ClientContext(user=User(id="u1", displayName="Ann"))


@pytest.fixture
def reconciler(context):
    return LiveStateReconciler(context)


@pytest.fixture
def joined(reconciler):
    """Reconciler with u1 inside forum f1."""
    reconciler.enter_room(Forum(id="f1", title="Python", topic="tech", host="Bo", participants=2))
    reconciler.load_room([])
    reconciler.context.room.entries.clear()
    return reconciler
