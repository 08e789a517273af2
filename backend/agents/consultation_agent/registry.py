"""
registry.py - In-memory lookup of live SessionControllers by session_id.

One controller per browser session. Nothing here survives a restart: conversation
history lives only as long as its session. The map is bounded:
  - navigated sessions are dropped once older than the retention window
  - sessions untouched for idle_ttl_seconds are unmounted and dropped
    (e.g. a greeting that never resolves)
  - above max_sessions, the least recently touched sessions are unmounted and dropped
"""
import logging
import time
from typing import Callable, Dict, Optional

from backend.agents.consultation_agent.controller import SessionController

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 300.0
DEFAULT_IDLE_TTL_SECONDS = 60 * 60.0
DEFAULT_MAX_ACTIVE_SESSIONS = 500


class SessionRegistry:
    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        idle_ttl_seconds: float = DEFAULT_IDLE_TTL_SECONDS,
        max_sessions: int = DEFAULT_MAX_ACTIVE_SESSIONS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: Dict[str, SessionController] = {}
        self._last_touched: Dict[str, float] = {}
        self._retention_seconds = retention_seconds
        self._idle_ttl_seconds = idle_ttl_seconds
        self._max_sessions = max_sessions
        self._clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def register(self, controller: SessionController) -> None:
        self.prune()
        self._sessions[controller.session_id] = controller
        self._last_touched[controller.session_id] = self._clock()
        self._enforce_cap()
        logger.info(
            "Session registered session_id=%s live=%d", controller.session_id, len(self._sessions)
        )

    def get(self, session_id: str) -> Optional[SessionController]:
        controller = self._sessions.get(session_id)
        if controller is not None:
            self._last_touched[session_id] = self._clock()
        return controller

    def remove(self, session_id: str) -> Optional[SessionController]:
        """Unmount and forget a session. Returns the controller, or None if unknown."""
        controller = self._pop(session_id)
        if controller is None:
            return None
        controller.unmount()
        logger.info("Session removed session_id=%s live=%d", session_id, len(self._sessions))
        return controller

    def prune(self) -> int:
        """Drop long-navigated sessions and unmount sessions idle past the TTL."""
        now = self._clock()
        navigated = [
            sid
            for sid, controller in self._sessions.items()
            if controller.navigated_at is not None
            and now - controller.navigated_at > self._retention_seconds
        ]
        for sid in navigated:
            self._pop(sid)

        idle = [
            sid
            for sid, touched in self._last_touched.items()
            if now - touched > self._idle_ttl_seconds
        ]
        for sid in idle:
            self._evict(sid)

        pruned = len(navigated) + len(idle)
        if pruned:
            logger.info(
                "Pruned sessions navigated=%d idle=%d live=%d",
                len(navigated), len(idle), len(self._sessions),
            )
        return pruned

    async def close_all(self) -> None:
        """Shutdown hook: unmount every live session and let summaries settle."""
        controllers = list(self._sessions.values())
        self._sessions.clear()
        self._last_touched.clear()
        for controller in controllers:
            controller.unmount()
        for controller in controllers:
            await controller.drain()
        logger.info("Closed %d sessions", len(controllers))

    def _enforce_cap(self) -> None:
        overflow = len(self._sessions) - self._max_sessions
        if overflow <= 0:
            return
        ordered = sorted(self._last_touched.items(), key=lambda item: item[1])
        for sid, _touched in ordered[:overflow]:
            self._evict(sid)
        logger.warning("Session cap reached, evicted %d sessions", overflow)

    def _evict(self, session_id: str) -> None:
        controller = self._pop(session_id)
        if controller is not None:
            controller.unmount()

    def _pop(self, session_id: str) -> Optional[SessionController]:
        self._last_touched.pop(session_id, None)
        return self._sessions.pop(session_id, None)
