"""Test configuration and shared fixtures for spinwheel tests."""

import asyncio

import pytest

from spinwheel.broadcaster import OutcomeBroadcaster
from spinwheel.config import WheelConfig
from spinwheel.events import GrantResult, RedemptionEvent
from spinwheel.exceptions import IdentityNotFound
from spinwheel.handler import RedemptionHandler
from spinwheel.task_tracker import TaskTracker

REWARD_ID = "reward-123"

VALID_ENVIRONMENT = {
    "TWITCH_BOT_USERNAME": "WheelBot",
    "TWITCH_CHANNEL": "#Streamer",
    "TWITCH_CLIENT_ID": "client-id",
    "TWITCH_CLIENT_SECRET": "client-secret",
    "TWITCH_ACCESS_TOKEN": "oauth:secret-token",
    "REDEMPTION_ID": REWARD_ID,
    "OBS_PASSWORD": "obs-password",
}


async def settle(rounds: int = 20) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_event(
    login: str = "viewer",
    display_name: str | None = None,
    reward_id: str | None = REWARD_ID,
    **kwargs,
) -> RedemptionEvent:
    return RedemptionEvent(
        channel="#streamer",
        display_name=display_name or login.capitalize(),
        login=login,
        reward_id=reward_id,
        **kwargs,
    )


class FakeClock:
    """Stand-in for asyncio.sleep that only advances when told to."""

    def __init__(self):
        self.now = 0.0
        self.delays: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future]] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + delay, future))
        await future

    async def advance(self, seconds: float) -> None:
        # Let freshly scheduled tasks reach their sleep first
        await settle()
        self.now += seconds
        for deadline, future in self._waiters:
            if deadline <= self.now and not future.done():
                future.set_result(None)
        self._waiters = [(d, f) for d, f in self._waiters if not f.done()]
        await settle()


class FixedRng:
    """Random source that always rolls the same number."""

    def __init__(self, roll: int):
        self.roll = roll

    def randint(self, a: int, b: int) -> int:
        return self.roll


class FakeHelix:
    """In-memory Helix with call recording."""

    def __init__(self):
        self.user_ids = {"streamer": "1000", "viewer": "2000"}
        self.lookup_errors: dict[str, Exception] = {}
        self.grant_result = GrantResult(success=True)
        self.grant_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.resolve_calls: list[str] = []
        self.grant_calls: list[tuple[str, str]] = []

    async def resolve_user_id(self, login: str) -> str:
        self.resolve_calls.append(login)
        if self.gate is not None:
            await self.gate.wait()
        if login in self.lookup_errors:
            raise self.lookup_errors[login]
        if login not in self.user_ids:
            raise IdentityNotFound(login)
        return self.user_ids[login]

    async def grant_vip(self, broadcaster_id: str, user_id: str) -> GrantResult:
        self.grant_calls.append((broadcaster_id, user_id))
        if self.grant_error is not None:
            raise self.grant_error
        return self.grant_result


class FakeChat:
    def __init__(self):
        self.messages: list[tuple[str, str]] = []
        self.timeouts: list[tuple[str, str, int]] = []

    async def say(self, channel: str, text: str) -> None:
        self.messages.append((channel, text))

    async def timeout(self, channel: str, user_id: str, seconds: int) -> None:
        self.timeouts.append((channel, user_id, seconds))


class FakeConnection:
    """Overlay socket double."""

    def __init__(self, closed: bool = False, fail: bool = False):
        self.closed = closed
        self.fail = fail
        self.sent: list[str] = []

    async def send_str(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("socket went away")
        self.sent.append(data)

    async def close(self) -> bool:
        self.closed = True
        return True


@pytest.fixture
def config():
    return WheelConfig(environ=dict(VALID_ENVIRONMENT))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def helix():
    return FakeHelix()


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def broadcaster():
    return OutcomeBroadcaster()


@pytest.fixture
def tracker(clock):
    return TaskTracker("test", sleep=clock.sleep)


@pytest.fixture
def make_handler(config, helix, chat, broadcaster, tracker):
    """Build a handler whose every spin rolls the given number."""

    def _make(roll: int = 50) -> RedemptionHandler:
        return RedemptionHandler(config, helix, chat, broadcaster, tracker, rng=FixedRng(roll))

    return _make
