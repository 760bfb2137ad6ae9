"""Tests for redemption handling: filtering, outcome branches and acknowledgments."""

import asyncio
import json

import pytest

from spinwheel.events import GrantResult
from spinwheel.exceptions import UpstreamError
from spinwheel.handler import (
    ALREADY_VIP_MESSAGE,
    ERROR_MESSAGE,
    GRANT_FAILED_MESSAGE,
    LOSE_MESSAGE,
    WIN_MESSAGE,
)

from .conftest import FakeConnection, make_event, settle

pytestmark = pytest.mark.asyncio


class TestFiltering:
    async def test_other_reward_is_ignored(self, make_handler, helix, chat, broadcaster, clock):
        connection = FakeConnection()
        broadcaster.add(connection)

        result = await make_handler(95).handle(make_event(reward_id="some-other-reward"))
        await settle()

        assert result is None
        assert connection.sent == []
        assert helix.resolve_calls == []
        assert chat.messages == [] and chat.timeouts == []
        assert clock.delays == []

    async def test_plain_chat_message_is_ignored(self, make_handler, helix):
        assert await make_handler().handle(make_event(reward_id=None)) is None
        assert helix.resolve_calls == []

    async def test_own_messages_are_ignored(self, make_handler, helix):
        handler = make_handler()

        assert await handler.handle(make_event(is_self=True)) is None
        assert await handler.handle(make_event(login="wheelbot")) is None
        assert helix.resolve_calls == []


class TestBroadcastOrdering:
    async def test_outcome_broadcast_before_lookups_finish(self, make_handler, helix, broadcaster):
        connection = FakeConnection()
        broadcaster.add(connection)
        helix.gate = asyncio.Event()

        task = asyncio.create_task(make_handler(95).handle(make_event()))
        await settle()

        # Lookups are still blocked, but the overlay already has the spin
        assert not task.done()
        assert [json.loads(m) for m in connection.sent] == [
            {"type": "spin", "username": "Viewer", "roll": 95, "isWin": True}
        ]

        helix.gate.set()
        outcome = await task
        assert outcome.is_win


class TestWinBranch:
    async def test_successful_grant_acknowledged_after_delay(self, make_handler, helix, chat, clock):
        outcome = await make_handler(95).handle(make_event())
        await settle()

        assert outcome.roll == 95 and outcome.is_win
        assert helix.grant_calls == [("1000", "2000")]
        assert chat.timeouts == []
        assert chat.messages == []
        assert clock.delays == [12.0]

        await clock.advance(11)
        assert chat.messages == []

        await clock.advance(1)
        assert chat.messages == [("#streamer", WIN_MESSAGE.format(name="Viewer"))]

    @pytest.mark.parametrize(
        "grant_result,template",
        [
            (GrantResult(success=False, already_granted=True), ALREADY_VIP_MESSAGE),
            (GrantResult(success=False), GRANT_FAILED_MESSAGE),
        ],
    )
    async def test_unsuccessful_grant_picks_message(self, make_handler, helix, chat, clock, grant_result, template):
        helix.grant_result = grant_result

        await make_handler(100).handle(make_event())
        await clock.advance(12)

        assert chat.messages == [("#streamer", template.format(name="Viewer"))]

    async def test_unexpected_grant_exception_counts_as_failure(self, make_handler, helix, chat, clock):
        helix.grant_error = RuntimeError("kaboom")

        await make_handler(91).handle(make_event())
        await clock.advance(12)

        assert chat.messages == [("#streamer", GRANT_FAILED_MESSAGE.format(name="Viewer"))]


class TestLoseBranch:
    async def test_timeout_issued_immediately_and_acknowledged_later(self, make_handler, helix, chat, clock):
        outcome = await make_handler(42).handle(make_event())

        assert not outcome.is_win
        assert chat.timeouts == [("#streamer", "2000", 300)]
        assert helix.grant_calls == []
        assert chat.messages == []

        await clock.advance(12)
        assert chat.messages == [("#streamer", LOSE_MESSAGE.format(name="Viewer"))]

    @pytest.mark.parametrize("roll,is_win", [(1, False), (90, False), (91, True), (100, True)])
    async def test_threshold(self, make_handler, helix, chat, roll, is_win):
        outcome = await make_handler(roll).handle(make_event())

        assert outcome.is_win is is_win
        assert bool(helix.grant_calls) is is_win
        assert bool(chat.timeouts) is not is_win


class TestFailures:
    async def test_unknown_viewer_reports_error_once(self, make_handler, helix, chat, clock, broadcaster):
        connection = FakeConnection()
        broadcaster.add(connection)

        outcome = await make_handler(95).handle(make_event(login="ghost123"))
        await clock.advance(12)

        assert outcome is not None
        assert len(connection.sent) == 1
        assert helix.grant_calls == []
        assert chat.timeouts == []
        assert chat.messages == [("#streamer", ERROR_MESSAGE.format(name="Ghost123"))]
        assert clock.delays == []

    async def test_upstream_error_on_viewer_lookup(self, make_handler, helix, chat):
        helix.lookup_errors["viewer"] = UpstreamError("HTTP 503", status=503)

        await make_handler(20).handle(make_event())

        assert chat.timeouts == []
        assert chat.messages == [("#streamer", ERROR_MESSAGE.format(name="Viewer"))]

    async def test_broadcaster_lookup_failure_skips_grant(self, make_handler, helix, chat, clock):
        helix.lookup_errors["streamer"] = UpstreamError("HTTP 500", status=500)

        await make_handler(95).handle(make_event())
        await clock.advance(12)

        assert helix.grant_calls == []
        assert chat.messages == [("#streamer", GRANT_FAILED_MESSAGE.format(name="Viewer"))]

    async def test_broadcaster_lookup_failure_still_times_out_losers(self, make_handler, helix, chat, clock):
        helix.lookup_errors["streamer"] = UpstreamError("HTTP 500", status=500)

        await make_handler(10).handle(make_event())
        await clock.advance(12)

        assert chat.timeouts == [("#streamer", "2000", 300)]
        assert chat.messages == [("#streamer", LOSE_MESSAGE.format(name="Viewer"))]

    async def test_broadcaster_lookup_timeout_still_times_out_losers(self, make_handler, helix, chat, clock):
        helix.lookup_errors["streamer"] = TimeoutError()

        await make_handler(10).handle(make_event())
        await clock.advance(12)

        assert chat.timeouts == [("#streamer", "2000", 300)]
        assert chat.messages == [("#streamer", LOSE_MESSAGE.format(name="Viewer"))]

    async def test_broadcaster_lookup_timeout_skips_grant(self, make_handler, helix, chat, clock):
        helix.lookup_errors["streamer"] = TimeoutError()

        await make_handler(95).handle(make_event())
        await clock.advance(12)

        assert helix.grant_calls == []
        assert chat.messages == [("#streamer", GRANT_FAILED_MESSAGE.format(name="Viewer"))]

    async def test_failed_broadcaster_lookup_is_retried_next_spin(self, make_handler, helix):
        handler = make_handler(95)
        helix.lookup_errors["streamer"] = UpstreamError("HTTP 500", status=500)
        await handler.handle(make_event())

        del helix.lookup_errors["streamer"]
        await handler.handle(make_event())

        assert helix.resolve_calls.count("streamer") == 2
        assert helix.grant_calls == [("1000", "2000")]


class TestConcurrency:
    async def test_broadcaster_id_resolved_once(self, make_handler, helix, chat, clock):
        handler = make_handler(50)
        viewers = [f"viewer{i}" for i in range(5)]
        for i, login in enumerate(viewers):
            helix.user_ids[login] = str(3000 + i)

        for login in viewers:
            await handler.handle(make_event(login=login))

        assert helix.resolve_calls.count("streamer") == 1
        assert handler.context.broadcaster_id == "1000"

    async def test_simultaneous_spins_each_acknowledged(self, make_handler, helix, chat, clock, broadcaster):
        connection = FakeConnection()
        broadcaster.add(connection)
        handler = make_handler(30)
        for login in ("alice", "bob", "carol"):
            helix.user_ids[login] = login.upper()

        await asyncio.gather(*(handler.handle(make_event(login=login)) for login in ("alice", "bob", "carol")))
        await settle()
        await clock.advance(12)

        assert len(connection.sent) == 3
        assert sorted(user_id for _, user_id, _ in chat.timeouts) == ["ALICE", "BOB", "CAROL"]
        assert sorted(text for _, text in chat.messages) == sorted(
            LOSE_MESSAGE.format(name=name) for name in ("Alice", "Bob", "Carol")
        )

    async def test_redelivered_event_acknowledged_once(self, make_handler, chat, clock):
        handler = make_handler(50)
        event = make_event(event_id="duplicate-id")

        await handler.handle(event)
        await handler.handle(event)
        await clock.advance(12)

        assert len(chat.messages) == 1
