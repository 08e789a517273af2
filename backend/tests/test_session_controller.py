"""
test_session_controller.py - SessionController lifecycle, timers and termination.

All timing runs on VirtualScheduler (one unit = one second in production):
  warning at 90, end at 120 after the last visitor turn (or the greeting),
  navigation 3 after termination.

Groups:
  1. Mount / opening greeting
  2. Visitor turns, ordering and fallbacks
  3. Inactivity timers (warning + auto-end, reset policy)
  4. Exactly-once termination across racing triggers
  5. Stale replies after termination
"""
from __future__ import annotations

import asyncio

import pytest

from backend.agents.consultation_agent.controller import SessionController
from backend.agents.consultation_agent.schemas import (
    EndReason,
    Phase,
    SessionConfig,
    Turn,
    TurnRole,
)
from tests.fakes import RecordingDispatcher, ScriptedReplyClient, VirtualScheduler


def _controller(eve, config, replies=None, dispatcher=None, navigations=None):
    scheduler = VirtualScheduler()
    reply_client = replies or ScriptedReplyClient("Bonjour Eve")
    dispatcher = dispatcher or RecordingDispatcher()
    nav = navigations if navigations is not None else []
    controller = SessionController(
        metadata=eve,
        reply_client=reply_client,
        dispatcher=dispatcher,
        config=config,
        scheduler=scheduler,
        on_navigate=nav.append,
        session_id="sess-1",
    )
    return controller, scheduler, reply_client, dispatcher, nav


# ===========================================================================
# GROUP 1: Mount / opening greeting
# ===========================================================================

@pytest.mark.asyncio
async def test_greeting_appended_and_session_active(eve, session_config) -> None:
    """Scenario A: mount with {Eve, e@x.com}, service replies 'Bonjour Eve'."""
    controller, _, replies, _, _ = _controller(eve, session_config)

    assert controller.phase is Phase.initializing
    await controller.start()

    assert controller.transcript == (Turn(role=TurnRole.advisor, text="Bonjour Eve"),)
    assert controller.phase is Phase.active
    assert controller.warning_shown is False
    assert controller.timers_armed
    # Greeting request carries an empty transcript and the metadata
    assert replies.calls == [((), eve)]


@pytest.mark.asyncio
async def test_greeting_failure_uses_fallback_and_still_starts(eve, session_config) -> None:
    controller, scheduler, _, _, _ = _controller(
        eve, session_config, replies=ScriptedReplyClient(None)
    )
    await controller.start()

    assert [t.text for t in controller.transcript] == [session_config.fallback_greeting]
    assert controller.phase is Phase.active

    # Fallback greeting arms the timers as well
    scheduler.advance(120)
    assert controller.end_reason is EndReason.inactivity


@pytest.mark.asyncio
async def test_greeting_client_exception_uses_fallback(eve, session_config) -> None:
    controller, _, _, _, _ = _controller(
        eve, session_config, replies=ScriptedReplyClient(RuntimeError("boom"))
    )
    await controller.start()

    assert controller.transcript[0].text == session_config.fallback_greeting
    assert controller.phase is Phase.active


@pytest.mark.asyncio
async def test_start_is_idempotent(eve, session_config) -> None:
    controller, _, replies, _, _ = _controller(eve, session_config)
    await controller.start()
    await controller.start()

    assert len(controller.transcript) == 1
    assert len(replies.calls) == 1


@pytest.mark.asyncio
async def test_phase_is_awaiting_reply_while_greeting_pending(eve, session_config) -> None:
    pending = asyncio.get_running_loop().create_future()
    controller, _, _, _, _ = _controller(
        eve, session_config, replies=ScriptedReplyClient(pending)
    )
    task = asyncio.create_task(controller.start())
    await asyncio.sleep(0)

    assert controller.phase is Phase.awaiting_reply
    assert controller.timers_armed is False
    assert await controller.send("trop tôt") is False

    pending.set_result("Bonjour Eve")
    await task
    assert controller.phase is Phase.active


# ===========================================================================
# GROUP 2: Visitor turns, ordering and fallbacks
# ===========================================================================

@pytest.mark.asyncio
async def test_send_appends_visitor_then_advisor(eve, session_config) -> None:
    replies = ScriptedReplyClient("Bonjour Eve", "Depuis quand?")
    controller, _, _, _, _ = _controller(eve, session_config, replies=replies)
    await controller.start()

    accepted = await controller.send("  Aidez-moi  ")

    assert accepted is True
    assert [(t.role, t.text) for t in controller.transcript] == [
        (TurnRole.advisor, "Bonjour Eve"),
        (TurnRole.visitor, "Aidez-moi"),
        (TurnRole.advisor, "Depuis quand?"),
    ]
    assert controller.phase is Phase.active
    # The reply request saw the full transcript including the new visitor turn
    sent_transcript, sent_metadata = replies.calls[1]
    assert [t.text for t in sent_transcript] == ["Bonjour Eve", "Aidez-moi"]
    assert sent_metadata is eve


@pytest.mark.asyncio
async def test_transcript_order_over_many_sends(eve, session_config) -> None:
    replies = ScriptedReplyClient("g", "r1", "r2", "r3", "r4")
    controller, scheduler, _, _, _ = _controller(eve, session_config, replies=replies)
    await controller.start()

    for i in range(1, 5):
        scheduler.advance(10)
        assert await controller.send(f"q{i}") is True

    texts = [t.text for t in controller.transcript]
    assert texts == ["g", "q1", "r1", "q2", "r2", "q3", "r3", "q4", "r4"]
    roles = [t.role for t in controller.transcript]
    assert roles[1::2] == [TurnRole.visitor] * 4
    assert roles[2::2] == [TurnRole.advisor] * 4


@pytest.mark.asyncio
async def test_reply_failure_appends_apology_and_returns_to_active(eve, session_config) -> None:
    """A 500 / invalid JSON from the service reaches the controller as None."""
    replies = ScriptedReplyClient("Bonjour Eve", None)
    controller, _, _, _, _ = _controller(eve, session_config, replies=replies)
    await controller.start()

    assert await controller.send("Aidez-moi") is True

    assert controller.transcript[-1] == Turn(
        role=TurnRole.advisor, text=session_config.apology_message
    )
    assert controller.phase is Phase.active


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_blank_input_rejected_without_side_effects(eve, session_config, text) -> None:
    controller, scheduler, replies, _, _ = _controller(eve, session_config)
    await controller.start()
    scheduler.advance(50)

    assert await controller.send(text) is False

    assert len(controller.transcript) == 1
    assert len(replies.calls) == 1
    # Timers were not reset: the end still lands 120 after the greeting
    scheduler.advance(70)
    assert controller.phase is Phase.ended


@pytest.mark.asyncio
async def test_send_rejected_while_reply_pending(eve, session_config) -> None:
    pending = asyncio.get_running_loop().create_future()
    replies = ScriptedReplyClient("Bonjour Eve", pending)
    controller, _, _, _, _ = _controller(eve, session_config, replies=replies)
    await controller.start()

    first = asyncio.create_task(controller.send("premier"))
    await asyncio.sleep(0)
    assert controller.phase is Phase.awaiting_reply

    assert await controller.send("deuxième") is False

    pending.set_result("réponse")
    assert await first is True
    assert [t.text for t in controller.transcript] == ["Bonjour Eve", "premier", "réponse"]


@pytest.mark.asyncio
async def test_send_rejected_after_end(eve, session_config) -> None:
    controller, _, replies, _, _ = _controller(eve, session_config)
    await controller.start()
    controller.end()

    assert await controller.send("encore là?") is False
    assert len(controller.transcript) == 1
    assert len(replies.calls) == 1
    await controller.drain()


# ===========================================================================
# GROUP 3: Inactivity timers
# ===========================================================================

@pytest.mark.asyncio
async def test_warning_then_inactivity_end(eve, session_config) -> None:
    """Scenario B: no visitor action after the greeting."""
    controller, scheduler, _, dispatcher, nav = _controller(eve, session_config)
    await controller.start()

    scheduler.advance(89)
    assert controller.warning_shown is False

    scheduler.advance(1)
    assert controller.warning_shown is True
    assert controller.display_phase() is Phase.warning_shown
    assert controller.snapshot().notice == session_config.warning_notice
    assert len(controller.transcript) == 1

    scheduler.advance(30)
    assert controller.phase is Phase.ended
    assert controller.end_reason is EndReason.inactivity
    assert controller.snapshot().notice == session_config.ended_notice

    await controller.drain()
    assert len(dispatcher.calls) == 1
    metadata, transcript, reason = dispatcher.calls[0]
    assert metadata is eve
    assert [t.text for t in transcript] == ["Bonjour Eve"]
    assert reason is EndReason.inactivity

    assert nav == []
    scheduler.advance(3)
    assert nav == ["/merci"]
    assert controller.navigate_to == "/merci"


@pytest.mark.asyncio
async def test_visitor_turn_resets_both_timers(eve, session_config) -> None:
    """Turn at T schedules warning T+90 / end T+120; a turn at T+50 moves the end to T+170."""
    controller, scheduler, _, _, _ = _controller(eve, session_config)
    await controller.start()

    scheduler.advance_to(5)           # T
    await controller.send("un")
    scheduler.advance_to(55)          # T+50
    await controller.send("deux")

    scheduler.advance_to(125)         # first turn's end would have been here
    assert controller.phase is Phase.active
    assert controller.warning_shown is False

    scheduler.advance_to(145)         # second turn's warning
    assert controller.warning_shown is True

    scheduler.advance_to(174.5)
    assert controller.phase is Phase.active

    scheduler.advance_to(175)         # T+170
    assert controller.phase is Phase.ended
    assert controller.end_reason is EndReason.inactivity
    await controller.drain()


@pytest.mark.asyncio
async def test_visitor_turn_clears_warning(eve, session_config) -> None:
    controller, scheduler, _, _, _ = _controller(eve, session_config)
    await controller.start()
    scheduler.advance(95)
    assert controller.warning_shown is True

    await controller.send("Je suis là")

    assert controller.warning_shown is False
    assert controller.snapshot().notice is None
    assert controller.display_phase() is Phase.active


@pytest.mark.asyncio
async def test_warning_does_not_block_sending(eve, session_config) -> None:
    controller, scheduler, _, _, _ = _controller(eve, session_config)
    await controller.start()
    scheduler.advance(100)

    assert await controller.send("toujours là") is True
    assert controller.transcript[-1].role is TurnRole.advisor


@pytest.mark.asyncio
async def test_termination_cancels_timers(eve, session_config) -> None:
    controller, scheduler, _, _, _ = _controller(eve, session_config)
    await controller.start()
    scheduler.advance(10)

    controller.end()

    assert controller.timers_armed is False
    scheduler.advance(500)
    assert controller.warning_shown is False
    assert controller.end_reason is EndReason.manual
    # Only the navigation timer ever fired after the end
    assert scheduler.pending() == []
    await controller.drain()


# ===========================================================================
# GROUP 4: Exactly-once termination
# ===========================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "triggers",
    [
        ("end", "end"),
        ("end", "unmount"),
        ("unmount", "end"),
        ("timeout", "end"),
        ("timeout", "unmount"),
        ("end", "timeout"),
        ("unmount", "unmount", "end", "timeout"),
    ],
)
async def test_termination_is_exactly_once(eve, session_config, triggers) -> None:
    controller, scheduler, _, dispatcher, nav = _controller(eve, session_config)
    await controller.start()

    results = []
    for trigger in triggers:
        if trigger == "end":
            results.append(controller.end())
        elif trigger == "unmount":
            results.append(controller.unmount())
        else:
            scheduler.advance(120)
            results.append(None)

    scheduler.advance(10)
    await controller.drain()

    assert controller.phase is Phase.ended
    assert len(dispatcher.calls) == 1
    assert nav == ["/merci"]
    assert [r for r in results if r is True] in ([True], [])
    expected = EndReason.inactivity if triggers[0] == "timeout" else EndReason.manual
    assert controller.end_reason is expected


@pytest.mark.asyncio
async def test_manual_end_dispatches_and_navigates_after_delay(eve, session_config) -> None:
    controller, scheduler, _, dispatcher, nav = _controller(eve, session_config)
    await controller.start()
    await controller.send("Merci")

    assert controller.end() is True
    await controller.drain()
    assert dispatcher.calls[0][2] is EndReason.manual
    assert len(dispatcher.calls[0][1]) == 3

    scheduler.advance(2.9)
    assert nav == []
    scheduler.advance(0.1)
    assert nav == ["/merci"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "dispatcher",
    [RecordingDispatcher(result=False), RecordingDispatcher(error=RuntimeError("sink down"))],
    ids=["delivery-failed", "dispatcher-raised"],
)
async def test_navigation_does_not_depend_on_dispatch(eve, session_config, dispatcher) -> None:
    controller, scheduler, _, _, nav = _controller(eve, session_config, dispatcher=dispatcher)
    await controller.start()
    controller.end()
    await controller.drain()

    scheduler.advance(3)
    assert nav == ["/merci"]
    assert controller.phase is Phase.ended


@pytest.mark.asyncio
async def test_unmount_before_greeting_ends_session(eve, session_config) -> None:
    pending = asyncio.get_running_loop().create_future()
    controller, scheduler, _, dispatcher, _ = _controller(
        eve, session_config, replies=ScriptedReplyClient(pending)
    )
    task = asyncio.create_task(controller.start())
    await asyncio.sleep(0)

    assert controller.unmount() is True
    pending.set_result("Bonjour Eve")
    await task

    # Greeting resolved after the end: discarded, timers never armed
    assert controller.transcript == ()
    assert controller.timers_armed is False
    await controller.drain()
    assert dispatcher.calls[0][1] == ()
    assert dispatcher.calls[0][2] is EndReason.manual


@pytest.mark.asyncio
@pytest.mark.parametrize("trigger", ["end", "unmount"])
async def test_start_after_termination_stays_ended(eve, session_config, trigger) -> None:
    """A session ended before mount never greets, arms timers or ends again."""
    controller, scheduler, replies, dispatcher, nav = _controller(eve, session_config)

    getattr(controller, trigger)()
    await controller.start()
    scheduler.advance(200)
    await controller.drain()

    assert controller.phase is Phase.ended
    assert controller.end_reason is EndReason.manual
    assert controller.transcript == ()
    assert replies.calls == []
    assert len(dispatcher.calls) == 1
    assert nav == ["/merci"]


def test_unmount_outside_event_loop_still_schedules_navigation(eve, session_config) -> None:
    """The dispatch task needs a running loop; navigation is scheduled before it."""
    controller, scheduler, _, dispatcher, nav = _controller(eve, session_config)

    with pytest.raises(RuntimeError):
        controller.unmount()

    assert controller.phase is Phase.ended
    scheduler.advance(3)
    assert nav == ["/merci"]
    assert dispatcher.calls == []


# ===========================================================================
# GROUP 5: Stale replies after termination
# ===========================================================================

@pytest.mark.asyncio
async def test_pending_reply_discarded_when_inactivity_ends_session(eve, session_config) -> None:
    """
    Scenario C: visitor sends 'Aidez-moi' at t=10 and the reply never arrives in time.

    The end timer fires 120 after that turn; the late reply is discarded.
    """
    pending = asyncio.get_running_loop().create_future()
    replies = ScriptedReplyClient("Bonjour Eve", pending)
    controller, scheduler, _, dispatcher, _ = _controller(eve, session_config, replies=replies)
    await controller.start()

    scheduler.advance_to(10)
    send_task = asyncio.create_task(controller.send("Aidez-moi"))
    await asyncio.sleep(0)
    assert controller.phase is Phase.awaiting_reply

    scheduler.advance_to(100)
    assert controller.warning_shown is True
    assert controller.display_phase() is Phase.warning_shown

    scheduler.advance_to(130)
    assert controller.phase is Phase.ended
    assert controller.end_reason is EndReason.inactivity
    expected = [(TurnRole.advisor, "Bonjour Eve"), (TurnRole.visitor, "Aidez-moi")]
    assert [(t.role, t.text) for t in controller.transcript] == expected

    pending.set_result("Réponse tardive")
    assert await send_task is True

    assert [(t.role, t.text) for t in controller.transcript] == expected
    await controller.drain()
    assert len(dispatcher.calls) == 1
    assert [t.text for t in dispatcher.calls[0][1]] == ["Bonjour Eve", "Aidez-moi"]


@pytest.mark.asyncio
async def test_pending_reply_discarded_after_manual_end(eve, session_config) -> None:
    pending = asyncio.get_running_loop().create_future()
    replies = ScriptedReplyClient("Bonjour Eve", pending)
    controller, _, _, _, _ = _controller(eve, session_config, replies=replies)
    await controller.start()

    send_task = asyncio.create_task(controller.send("Une question"))
    await asyncio.sleep(0)
    controller.end()
    pending.set_result(None)  # a failed reply must not add the apology either
    await send_task

    assert [t.role for t in controller.transcript] == [TurnRole.advisor, TurnRole.visitor]
    await controller.drain()


@pytest.mark.asyncio
async def test_snapshot_reflects_state(eve, session_config) -> None:
    controller, scheduler, _, _, _ = _controller(eve, session_config)
    await controller.start()

    snap = controller.snapshot()
    assert snap.session_id == "sess-1"
    assert snap.phase is Phase.active
    assert snap.end_reason is None
    assert snap.navigate_to is None

    controller.end()
    scheduler.advance(3)
    snap = controller.snapshot()
    assert snap.phase is Phase.ended
    assert snap.end_reason is EndReason.manual
    assert snap.navigate_to == "/merci"
    await controller.drain()


def test_session_config_rejects_warning_after_end() -> None:
    with pytest.raises(ValueError):
        SessionConfig(warning_delay=120, end_delay=90)
    with pytest.raises(ValueError):
        SessionConfig(navigation_delay=0)


@pytest.mark.asyncio
async def test_real_event_loop_timers(eve) -> None:
    """Default LoopScheduler drives the same lifecycle on asyncio's loop.call_later."""
    navigations: list[str] = []
    dispatcher = RecordingDispatcher()
    controller = SessionController(
        metadata=eve,
        reply_client=ScriptedReplyClient("Bonjour Eve"),
        dispatcher=dispatcher,
        config=SessionConfig(warning_delay=0.05, end_delay=0.3, navigation_delay=0.05),
        on_navigate=navigations.append,
    )
    await controller.start()

    await asyncio.sleep(0.15)
    assert controller.warning_shown is True

    await asyncio.sleep(0.4)
    await controller.drain()
    assert controller.end_reason is EndReason.inactivity
    assert navigations == ["/merci"]
    assert len(dispatcher.calls) == 1
