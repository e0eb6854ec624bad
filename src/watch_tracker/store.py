"""State handle: the single owner of AppState."""

import logging
from typing import Callable, Optional

from .models import AppState, TrackableUnit
from .reducer import Action, reduce
from .storage import SnapshotStorage

logger = logging.getLogger(__name__)

StateListener = Callable[[AppState, Action], None]


class StateStore:
    """Holds the current AppState, applies actions and persists after each one.

    The state is loaded from storage once on construction. Transitions are
    applied one at a time; listeners run after the new state has been saved.
    """

    def __init__(self, storage: SnapshotStorage, state: Optional[AppState] = None):
        """Initialize the store, loading the snapshot unless a state is given."""
        self.storage = storage
        self._state = state if state is not None else storage.load()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def get_unit(self, unit_id: str) -> TrackableUnit:
        return self._state.get_unit(unit_id)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def dispatch(self, action: Action) -> AppState:
        """Apply an action, persist the result and notify listeners."""
        self._state = reduce(self._state, action)
        logger.debug(f"Applied {action.type}")
        self.storage.save(self._state)
        for listener in list(self._listeners):
            listener(self._state, action)
        return self._state
