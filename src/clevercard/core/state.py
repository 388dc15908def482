"""Application state container (F1).

Holds the single ``AppState`` snapshot shared by the session manager, the
store and the UI. Writers hand in a function from the old snapshot to the
new one; readers always get a fully formed snapshot.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable

import structlog

from clevercard.core.models import AppState

logger = structlog.get_logger(__name__)

Listener = Callable[[AppState], None]
Unsubscribe = Callable[[], None]


class StateContainer:
    """Single-writer holder of the current ``AppState``.

    All writes go through ``update`` or ``replace``; both swap the whole
    snapshot in one assignment, so there is nothing to lock.
    """

    def __init__(self, initial: AppState | None = None):
        self._state = initial or AppState()
        self._listeners: list[Listener] = []
        # Bumped whenever the user is dropped; work started under an older epoch is discarded
        self._epoch = 0

    @property
    def state(self) -> AppState:
        """Current snapshot."""
        return self._state

    @property
    def epoch(self) -> int:
        """Counter bumped every time the user is dropped."""
        return self._epoch

    def update(self, fn: Callable[[AppState], AppState]) -> AppState:
        """Replace the snapshot with ``fn(current)``.

        Args:
            fn: Pure function producing the next snapshot

        Returns:
            The new snapshot
        """
        new_state = fn(self._state)
        if not isinstance(new_state, AppState):
            raise TypeError("update() must produce an AppState")
        self._state = new_state
        self._notify(new_state)
        return new_state

    def replace(self, **changes: Any) -> AppState:
        """Shorthand for ``update`` with ``dataclasses.replace``."""
        return self.update(lambda s: dataclasses.replace(s, **changes))

    def reset(self, **changes: Any) -> AppState:
        """Clear user and every collection in one swap.

        Bumps the epoch so results of in-flight loads are dropped.
        """
        self._epoch += 1
        cleared = dataclasses.replace(
            self._state,
            user=None,
            classes=(),
            students=(),
            reports=(),
            **changes,
        )
        logger.debug("state_reset", epoch=self._epoch)
        return self.update(lambda _s: cleared)

    def clear_user(self) -> AppState:
        """Drop the user but keep the collections.

        Bumps the epoch like reset(), so in-flight sign-ins and loads
        cannot bring the user or its data back.
        """
        self._epoch += 1
        logger.debug("user_cleared", epoch=self._epoch)
        return self.replace(user=None)

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """Register a listener called with every new snapshot.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, state: AppState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.warning("state_listener_failed", error=str(e))
