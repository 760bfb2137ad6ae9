"""Redemption handling: roll, broadcast, then grant VIP or time out.

One call to ``RedemptionHandler.handle`` processes one chat event from
start to finish. The outcome is broadcast before any network call so the
overlay starts spinning immediately; the chat acknowledgment is deferred by
the overlay's animation length so it lands after viewers see the result.
"""

import random
from dataclasses import dataclass
from typing import Protocol

from .broadcaster import OutcomeBroadcaster
from .chat import ChatSender
from .config import WheelConfig
from .events import GrantResult, Outcome, RedemptionEvent
from .logger import bind_event_context, clear_context, get_logger
from .outcome import roll_outcome
from .task_tracker import TaskTracker

logger = get_logger(__name__)

WIN_MESSAGE = "{name} hit the jackpot and is now a VIP! Congrats!"
ALREADY_VIP_MESSAGE = "{name} hit the jackpot, but is already a VIP!"
GRANT_FAILED_MESSAGE = "{name} hit the jackpot! VIP could not be granted automatically, a mod will sort it out."
LOSE_MESSAGE = "{name} spun the wheel and lost. See you in 5 minutes o7"
ERROR_MESSAGE = "Something went wrong processing the wheel spin for {name}."


class HelixOperations(Protocol):
    async def resolve_user_id(self, login: str) -> str: ...

    async def grant_vip(self, broadcaster_id: str, user_id: str) -> GrantResult: ...


@dataclass
class OrchestratorContext:
    """State shared by every redemption for the life of the process."""

    # Filled on first use, never invalidated
    broadcaster_id: str | None = None


class RedemptionHandler:
    """Consumes chat events and drives the spin side effects."""

    def __init__(
        self,
        config: WheelConfig,
        helix: HelixOperations,
        chat: ChatSender,
        broadcaster: OutcomeBroadcaster,
        scheduler: TaskTracker,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.helix = helix
        self.chat = chat
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.rng = rng
        self.context = OrchestratorContext()

    def matches(self, event: RedemptionEvent) -> bool:
        """True for redemptions of the configured reward not sent by the bot."""
        if event.is_self or event.login == (self.config.bot_username or "").lower():
            return False
        return event.reward_id is not None and event.reward_id == self.config.reward_id

    async def handle(self, event: RedemptionEvent) -> Outcome | None:
        """
        Process one chat event.

        Returns:
            Outcome | None: The spin result, or None when the event was filtered out
        """
        if not self.matches(event):
            return None

        bind_event_context(event_id=event.event_id, user=event.login)
        try:
            outcome = roll_outcome(event.display_name, self.rng)
            logger.info(f"{event.display_name} spun the wheel and rolled {outcome.roll}")

            self.broadcaster.broadcast(outcome)

            try:
                await self._dispatch(event, outcome)
            except Exception as e:
                logger.error(
                    f"Error processing wheel spin for {event.display_name}: {e}",
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await self._report_failure(event)

            return outcome
        finally:
            clear_context()

    async def _dispatch(self, event: RedemptionEvent, outcome: Outcome) -> None:
        broadcaster_id = await self._ensure_broadcaster_id()
        user_id = await self.helix.resolve_user_id(event.login)

        if outcome.is_win:
            logger.info(f"{event.display_name} won! Attempting to assign VIP...")
            result = await self._grant(broadcaster_id, user_id)
            if result.success:
                text = WIN_MESSAGE
            elif result.already_granted:
                text = ALREADY_VIP_MESSAGE
            else:
                text = GRANT_FAILED_MESSAGE
        else:
            logger.info(f"{event.display_name} lost. Timing out for {self.config.timeout_seconds} seconds.")
            await self.chat.timeout(event.channel, user_id, self.config.timeout_seconds)
            text = LOSE_MESSAGE

        self._schedule_acknowledgment(event, text.format(name=event.display_name))

    async def _ensure_broadcaster_id(self) -> str | None:
        # Two spins arriving together may both resolve this; the value is the same either way
        if self.context.broadcaster_id is None:
            try:
                self.context.broadcaster_id = await self.helix.resolve_user_id(self.config.channel_name)
                logger.info("Broadcaster ID cached", broadcaster_id=self.context.broadcaster_id)
            except Exception as e:
                # Not fatal: a loser can still be timed out and acknowledged without it
                logger.error(
                    "Failed to resolve broadcaster ID",
                    channel=self.config.channel_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return self.context.broadcaster_id

    async def _grant(self, broadcaster_id: str | None, user_id: str) -> GrantResult:
        if broadcaster_id is None:
            # A grant without a broadcaster id would be a malformed request
            logger.error("Broadcaster ID unavailable, skipping VIP grant", user_id=user_id)
            return GrantResult(success=False)

        try:
            return await self.helix.grant_vip(broadcaster_id, user_id)
        except Exception as e:
            logger.error("Unexpected error during VIP grant", user_id=user_id, error=str(e), exc_info=True)
            return GrantResult(success=False)

    def _schedule_acknowledgment(self, event: RedemptionEvent, text: str) -> None:
        async def _acknowledge():
            await self.chat.say(event.channel, text)
            logger.info("Spin acknowledgment sent", user=event.login)

        self.scheduler.schedule(event.event_id, self.config.ack_delay, _acknowledge)

    async def _report_failure(self, event: RedemptionEvent) -> None:
        try:
            await self.chat.say(event.channel, ERROR_MESSAGE.format(name=event.display_name))
        except Exception as e:
            logger.error("Failed to send failure message", error=str(e))
