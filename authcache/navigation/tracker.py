"""Per-session navigation history feeding the transition model."""

import time
import uuid
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING

from authcache.core.structlog_logger import StructlogMixin
from authcache.navigation.models import NavigationEvent
from authcache.navigation.transition_model import TransitionModel


if TYPE_CHECKING:
    from authcache.metrics.monitor import PerformanceMonitor


class NavigationTracker(StructlogMixin):
    """Bounded ring buffer of navigation events per session.

    Each ``record`` feeds ``TransitionModel.update(previous, route)`` when the
    session already has a previous route, in call order. Events live only as
    long as their session; they are never persisted.
    """

    def __init__(
        self,
        model: TransitionModel,
        max_history: int = 50,
        monitor: "PerformanceMonitor | None" = None,
        count_self_transitions: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.model = model
        self.max_history = max_history
        self.monitor = monitor
        self.count_self_transitions = count_self_transitions
        self._clock = clock
        self._histories: dict[str, deque[NavigationEvent]] = {}
        self._session_users: dict[str, str | None] = {}
        self._current_session: str | None = None

    @property
    def current_session(self) -> str | None:
        return self._current_session

    @property
    def current_route(self) -> str | None:
        if self._current_session is None:
            return None
        history = self._histories.get(self._current_session)
        return history[-1].route if history else None

    def start_session(
        self, session_id: str | None = None, user_id: str | None = None
    ) -> str:
        """Open a session and make it current.

        Returns:
            The session id, generated when not given
        """
        session_id = session_id or uuid.uuid4().hex
        self._histories.setdefault(session_id, deque(maxlen=self.max_history))
        self._session_users[session_id] = user_id
        self._current_session = session_id
        self.logger.debug("session_started", session_id=session_id, user_id=user_id)
        return session_id

    def end_session(self, session_id: str | None = None) -> int:
        """Discard a session's events (the current session by default).

        Returns:
            Number of events discarded
        """
        session_id = session_id or self._current_session
        if session_id is None:
            return 0

        history = self._histories.pop(session_id, None)
        self._session_users.pop(session_id, None)
        if session_id == self._current_session:
            self._current_session = None

        discarded = len(history) if history else 0
        self.logger.debug("session_ended", session_id=session_id, events=discarded)
        return discarded

    def record(self, route: str, session_id: str | None = None) -> NavigationEvent:
        """Append a navigation event and update the transition model.

        A session is started implicitly if none is current.
        """
        if session_id is None:
            session_id = self._current_session or self.start_session()
        history = self._histories.get(session_id)
        if history is None:
            history = deque(maxlen=self.max_history)
            self._histories[session_id] = history

        now = self._clock()
        previous = history[-1].route if history else None
        event = NavigationEvent(route=route, timestamp=now, session_id=session_id)
        history.append(event)

        if previous is not None and (previous != route or self.count_self_transitions):
            self.model.update(previous, route, now=now)

        if self.monitor is not None:
            self.monitor.record_navigation(route)
        return event

    def history(self, session_id: str | None = None) -> list[NavigationEvent]:
        """Events of a session, oldest first."""
        session_id = session_id or self._current_session
        if session_id is None:
            return []
        return list(self._histories.get(session_id, ()))

    def previous_route(self, session_id: str | None = None) -> str | None:
        """The route visited before the current one."""
        events = self.history(session_id)
        return events[-2].route if len(events) >= 2 else None

    def sessions(self) -> list[str]:
        return list(self._histories)

    def session_user(self, session_id: str | None = None) -> str | None:
        session_id = session_id or self._current_session
        return self._session_users.get(session_id) if session_id else None
