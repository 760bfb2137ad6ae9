"""Twitch chat connection through twitchio.

Reward redemptions arrive over an EventSub websocket. Acknowledgments and
timeouts go out through Helix on the access token's account, which must be
the broadcaster's: the redemption subscription and the VIP grant both
require it (channel:read:redemptions, channel:manage:vips,
moderator:manage:banned_users, user:write:chat).
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import twitchio
from twitchio import eventsub
from twitchio.exceptions import HTTPException

from .error_boundary import safe_handler
from .events import RedemptionEvent
from .exceptions import IdentityNotFound
from .logger import get_logger

logger = get_logger(__name__)

# twitchio logs every EventSub keepalive and reconnect at INFO
logging.getLogger("twitchio.eventsub.websockets").setLevel(logging.WARNING)
logging.getLogger("twitchio.authentication.tokens").setLevel(logging.WARNING)

TIMEOUT_REASON = "Lost the wheel spin"

RedemptionCallback = Callable[[RedemptionEvent], Any]
ChatAction = Callable[[], Awaitable[Any]]


class ChatSender(Protocol):
    """Outbound chat operations used by the redemption handler."""

    async def say(self, channel: str, text: str) -> None: ...

    async def timeout(self, channel: str, user_id: str, seconds: int) -> None: ...


def redemption_from_payload(payload: twitchio.ChannelPointsRedemptionAdd, own_user_id: str | None) -> RedemptionEvent:
    """Map an EventSub reward redemption onto a RedemptionEvent."""
    user = payload.user
    return RedemptionEvent(
        channel=(payload.broadcaster.name or "").lower(),
        display_name=user.display_name or user.name,
        login=(user.name or "").lower(),
        reward_id=payload.reward.id,
        message=payload.user_input or "",
        is_self=own_user_id is not None and str(user.id) == own_user_id,
        event_id=payload.id,
    )


class WheelBot(twitchio.Client):
    """twitchio client that hands reward redemptions to a TwitchChatClient."""

    def __init__(self, chat: "TwitchChatClient", *, client_id: str, client_secret: str):
        super().__init__(client_id=client_id, client_secret=client_secret)
        self.chat = chat

    async def setup_hook(self) -> None:
        await self.chat.subscribe(self)

    async def event_ready(self) -> None:
        logger.info("twitchio client ready", channel=self.chat.channel)

    async def event_custom_redemption_add(self, payload: twitchio.ChannelPointsRedemptionAdd) -> None:
        await self.chat.handle_redemption(payload)


class TwitchChatClient:
    """Redemptions in, chat actions out, for a single channel.

    Outbound actions go through one queue drained by a single writer task,
    so concurrent spins never interleave their requests. Actions queued
    before the subscription is up wait for it.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        access_token: str,
        channel: str,
        refresh_token: str = "",
        client: twitchio.Client | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.channel = channel.lstrip("#").lower()

        self.client = client
        self.user_id: str | None = None
        self.broadcaster: twitchio.PartialUser | None = None

        self._callbacks: list[RedemptionCallback] = []
        self._outbox: asyncio.Queue[ChatAction] = asyncio.Queue()
        self._ready = asyncio.Event()
        self._runner: asyncio.Task | None = None
        self._writer: asyncio.Task | None = None

        self.redemptions_received = 0
        self.actions_sent = 0
        self.actions_failed = 0

    @property
    def is_connected(self) -> bool:
        return self._ready.is_set()

    def on_redemption(self, callback: RedemptionCallback) -> None:
        """Register a callback for every redemption. Coroutine callbacks are awaited."""
        self._callbacks.append(callback)

    async def start(self) -> None:
        """Start twitchio and the outbound writer in the background."""
        if self.client is None:
            self.client = WheelBot(self, client_id=self.client_id, client_secret=self.client_secret)

        self._writer = asyncio.create_task(self._writer_loop(), name="chat-writer")
        self._runner = asyncio.create_task(self._run(), name="chat")

    async def _run(self) -> None:
        try:
            # Tokens come from configuration, not twitchio's token file
            await self.client.start(with_adapter=False, load_tokens=False, save_tokens=False)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Chat client stopped: {e}", error_type=type(e).__name__, exc_info=True)
        finally:
            self._ready.clear()

    async def subscribe(self, client: twitchio.Client) -> None:
        """Register the access token and subscribe to the channel's redemptions.

        Raises:
            IdentityNotFound: The configured channel does not exist
        """
        validated = await client.add_token(self.access_token, self.refresh_token)
        self.user_id = str(validated.user_id)

        users = await client.fetch_users(logins=[self.channel])
        if not users:
            raise IdentityNotFound(self.channel)
        self.broadcaster = users[0]

        await client.subscribe_websocket(
            eventsub.ChannelPointsRedeemAddSubscription(broadcaster_user_id=str(self.broadcaster.id)),
            token_for=self.user_id,
        )
        self._ready.set()
        logger.info(
            "Subscribed to channel point redemptions",
            channel=self.channel,
            broadcaster_id=self.broadcaster.id,
            user_id=self.user_id,
        )

    async def handle_redemption(self, payload: twitchio.ChannelPointsRedemptionAdd) -> None:
        self.redemptions_received += 1
        event = redemption_from_payload(payload, self.user_id)
        logger.debug("Redemption received", reward_id=event.reward_id, user=event.login)
        await self._dispatch(event)

    @safe_handler
    async def _dispatch(self, event: RedemptionEvent) -> None:
        for callback in self._callbacks:
            result = callback(event)
            if asyncio.iscoroutine(result):
                await result

    async def say(self, channel: str, text: str) -> None:
        """Queue a chat message."""
        if self._accepts(channel):
            await self._outbox.put(functools.partial(self._send_message, text))
            logger.debug("Chat message queued", text=text)

    async def timeout(self, channel: str, user_id: str, seconds: int) -> None:
        """Queue a timeout of ``user_id`` for ``seconds``."""
        if self._accepts(channel):
            await self._outbox.put(functools.partial(self._timeout_user, user_id, seconds))
            logger.debug("Timeout queued", user_id=user_id, seconds=seconds)

    def _accepts(self, channel: str) -> bool:
        if channel.lstrip("#").lower() == self.channel:
            return True
        logger.warning("Dropping chat action for another channel", channel=channel, joined=self.channel)
        return False

    async def _send_message(self, text: str) -> None:
        await self.broadcaster.send_message(message=text, sender=self.user_id, token_for=self.user_id)

    async def _timeout_user(self, user_id: str, seconds: int) -> None:
        await self.broadcaster.timeout_user(
            moderator=self.user_id, user=user_id, duration=seconds, reason=TIMEOUT_REASON
        )

    async def _writer_loop(self) -> None:
        while True:
            action = await self._outbox.get()
            try:
                await self._ready.wait()
                await action()
                self.actions_sent += 1
            except HTTPException as e:
                self.actions_failed += 1
                logger.error(f"Twitch rejected chat action: {e}", status=e.status)
            except Exception as e:
                self.actions_failed += 1
                logger.error(f"Chat action failed: {e}", error_type=type(e).__name__, exc_info=True)
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued action has been attempted."""
        await self._outbox.join()

    async def stop(self) -> None:
        """Close twitchio and stop the writer. Queued actions are dropped."""
        self._ready.clear()
        if self.client is not None:
            try:
                await self.client.close()
            except Exception as e:
                logger.warning(f"Error closing chat client: {e}")

        tasks = [task for task in (self._runner, self._writer) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Chat client stopped", dropped_actions=self._outbox.qsize())

    def get_status(self) -> dict:
        return {
            "connected": self.is_connected,
            "channel": self.channel,
            "user_id": self.user_id,
            "broadcaster_id": self.broadcaster.id if self.broadcaster else None,
            "queued_actions": self._outbox.qsize(),
            "redemptions_received": self.redemptions_received,
            "actions_sent": self.actions_sent,
            "actions_failed": self.actions_failed,
        }
