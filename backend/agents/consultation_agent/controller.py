"""
controller.py - SessionController: lifecycle of one chat consultation.

State machine:
  initializing -> awaiting_reply -> active <-> awaiting_reply
  warning_shown is a display flag over active/awaiting_reply, not a separate state.
  ended is absorbing.

Three sources resume the controller at arbitrary times on one event loop:
visitor input, a pending reply fetch, and timer expiry. They are serialized
through self._phase, the only shared mutable state. No locks: there is
interleaving but no parallelism.

Termination (exactly once, whichever trigger comes first):
  - end timer elapsing since the last visitor turn   -> EndReason.inactivity
  - explicit end() from the visitor                   -> EndReason.manual
  - unmount() when the view goes away                 -> EndReason.manual (no-op if ended)
Protocol: phase := ended (re-entry guard), cancel timers, schedule navigation after
navigation_delay, then dispatch the summary in the background. Navigation never
waits on the dispatch result.

The controller runs on an event loop: termination spawns the dispatch as a task,
so end() and unmount() must be called from async context.

A reply that resolves after termination is discarded, never appended.
"""
import asyncio
import logging
import time
import uuid
from typing import Callable, Coroutine, List, Optional, Protocol, Sequence, Set, Tuple

from backend.agents.consultation_agent.schemas import (
    ContactMetadata,
    EndReason,
    Phase,
    SessionConfig,
    SessionSnapshot,
    Turn,
    TurnRole,
)
from backend.agents.consultation_agent.timers import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class ReplySource(Protocol):
    async def fetch_reply(
        self, transcript: Sequence[Turn], metadata: ContactMetadata
    ) -> Optional[str]: ...


class SummarySink(Protocol):
    async def dispatch(
        self, metadata: ContactMetadata, transcript: Sequence[Turn], end_reason: EndReason
    ) -> bool: ...


class SessionController:
    """
    Owns one session's transcript, timers and termination protocol.

    Args:
        metadata:     Contact fields captured before the session. Never mutated.
        reply_client: Anything with fetch_reply(); returns None on failure.
        dispatcher:   Anything with dispatch(); failure is logged, never raised.
        config:       Delays and fixed texts (fallback greeting, apology, notices).
        scheduler:    Deferred-call provider; defaults to the running event loop.
        on_navigate:  Called once with config.confirmation_path after termination.
    """

    def __init__(
        self,
        metadata: ContactMetadata,
        reply_client: ReplySource,
        dispatcher: SummarySink,
        config: Optional[SessionConfig] = None,
        scheduler: Optional[Scheduler] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self.metadata = metadata
        self._reply_client = reply_client
        self._dispatcher = dispatcher
        self._config = config or SessionConfig()
        self._scheduler = scheduler or LoopScheduler()
        self._on_navigate = on_navigate

        self._transcript: List[Turn] = []
        self._phase = Phase.initializing
        self._warning_shown = False
        self._end_reason: Optional[EndReason] = None
        self._started = False

        self._warning_timer: Optional[TimerHandle] = None
        self._end_timer: Optional[TimerHandle] = None
        self._navigation_timer: Optional[TimerHandle] = None
        self._navigate_to: Optional[str] = None
        self.navigated_at: Optional[float] = None

        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def warning_shown(self) -> bool:
        return self._warning_shown

    @property
    def end_reason(self) -> Optional[EndReason]:
        return self._end_reason

    @property
    def transcript(self) -> Tuple[Turn, ...]:
        return tuple(self._transcript)

    @property
    def is_ended(self) -> bool:
        return self._phase is Phase.ended

    @property
    def navigate_to(self) -> Optional[str]:
        return self._navigate_to

    @property
    def timers_armed(self) -> bool:
        return self._warning_timer is not None or self._end_timer is not None

    def display_phase(self) -> Phase:
        if self._warning_shown and self._phase in (Phase.active, Phase.awaiting_reply):
            return Phase.warning_shown
        return self._phase

    def snapshot(self) -> SessionSnapshot:
        if self.is_ended:
            notice = self._config.ended_notice
        elif self._warning_shown:
            notice = self._config.warning_notice
        else:
            notice = None
        return SessionSnapshot(
            session_id=self.session_id,
            phase=self.display_phase(),
            warning_shown=self._warning_shown,
            transcript=list(self._transcript),
            end_reason=self._end_reason,
            notice=notice,
            navigate_to=self._navigate_to,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Request the opening greeting and arm the inactivity timers.

        The session never fails to start: a degraded reply service yields the
        fixed fallback greeting. Calling start() twice, or after the session
        already ended, is a no-op.
        """
        if self._started or self.is_ended:
            return
        self._started = True
        self._phase = Phase.awaiting_reply
        logger.info("Session mounted session_id=%s", self.session_id)

        reply = await self._request_reply()
        if self.is_ended:
            logger.info("Discarding greeting for ended session_id=%s", self.session_id)
            return

        if reply is None:
            logger.info("Using fallback greeting session_id=%s", self.session_id)
            reply = self._config.fallback_greeting
        self._append(TurnRole.advisor, reply)
        self._arm_timers()
        self._phase = Phase.active

    async def send(self, text: str) -> bool:
        """
        Append a visitor turn and fetch the advisor's answer.

        Returns False (no state change, no request) when the text is blank, a
        reply is already pending, or the session is not active. Returns True
        once the visitor turn was appended, whether or not the advisor turn
        survives a concurrent termination.
        """
        cleaned = (text or "").strip()
        if not cleaned:
            return False
        if self._phase is not Phase.active:
            logger.debug(
                "Ignoring visitor input session_id=%s phase=%s",
                self.session_id, self._phase.value,
            )
            return False

        self._append(TurnRole.visitor, cleaned)
        self._arm_timers()
        self._phase = Phase.awaiting_reply

        reply = await self._request_reply()
        if self.is_ended:
            logger.info(
                "Discarding late advisor reply session_id=%s end_reason=%s",
                self.session_id, self._end_reason.value if self._end_reason else None,
            )
            return True

        if reply is None:
            reply = self._config.apology_message
        self._append(TurnRole.advisor, reply)
        self._phase = Phase.active
        return True

    def end(self) -> bool:
        """Explicit 'end session' from the visitor. True if this call ended it."""
        return self._terminate(EndReason.manual)

    def unmount(self) -> bool:
        """The view is going away: implicit manual end, no-op when already ended."""
        return self._terminate(EndReason.manual)

    async def drain(self) -> None:
        """Wait for background work (summary dispatch) to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _append(self, role: TurnRole, text: str) -> None:
        if self.is_ended:
            raise RuntimeError("cannot append to an ended transcript")
        self._transcript.append(Turn(role=role, text=text))

    async def _request_reply(self) -> Optional[str]:
        snapshot = tuple(self._transcript)
        try:
            return await self._reply_client.fetch_reply(snapshot, self.metadata)
        except Exception:
            logger.exception("Reply client raised session_id=%s", self.session_id)
            return None

    def _arm_timers(self) -> None:
        self._cancel_timers()
        self._warning_shown = False
        self._warning_timer = self._scheduler.call_later(
            self._config.warning_delay, self._on_warning_timer
        )
        self._end_timer = self._scheduler.call_later(
            self._config.end_delay, self._on_end_timer
        )

    def _cancel_timers(self) -> None:
        if self._warning_timer is not None:
            self._warning_timer.cancel()
            self._warning_timer = None
        if self._end_timer is not None:
            self._end_timer.cancel()
            self._end_timer = None

    def _on_warning_timer(self) -> None:
        self._warning_timer = None
        if self.is_ended:
            return
        self._warning_shown = True
        logger.info("Inactivity warning shown session_id=%s", self.session_id)

    def _on_end_timer(self) -> None:
        self._end_timer = None
        self._terminate(EndReason.inactivity)

    def _terminate(self, reason: EndReason) -> bool:
        if self.is_ended:
            return False
        self._phase = Phase.ended
        self._end_reason = reason
        self._cancel_timers()
        self._warning_shown = False
        logger.info(
            "Session ended session_id=%s end_reason=%s turns=%d",
            self.session_id, reason.value, len(self._transcript),
        )

        self._navigation_timer = self._scheduler.call_later(
            self._config.navigation_delay, self._navigate
        )
        self._spawn(self._dispatch_summary, reason, tuple(self._transcript))
        return True

    async def _dispatch_summary(self, reason: EndReason, transcript: Tuple[Turn, ...]) -> None:
        try:
            delivered = await self._dispatcher.dispatch(self.metadata, transcript, reason)
        except Exception:
            logger.exception("Summary dispatcher raised session_id=%s", self.session_id)
            return
        if not delivered:
            logger.warning("Summary not delivered session_id=%s", self.session_id)

    def _navigate(self) -> None:
        self._navigation_timer = None
        if self._navigate_to is not None:
            return
        self._navigate_to = self._config.confirmation_path
        self.navigated_at = time.monotonic()
        logger.info(
            "Navigation signalled session_id=%s to=%s", self.session_id, self._navigate_to
        )
        if self._on_navigate is not None:
            self._on_navigate(self._navigate_to)

    def _spawn(self, coro_fn: Callable[..., Coroutine], *args) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(coro_fn(*args))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
