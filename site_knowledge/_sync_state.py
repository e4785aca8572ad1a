"""Observable sync state."""

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    """Phases of a pull attempt."""

    IDLE = "idle"
    CHECKING = "checking"
    SYNCING = "syncing"
    OK = "ok"
    ERROR = "error"
    OFFLINE = "offline"


TERMINAL_PHASES = frozenset({SyncPhase.OK, SyncPhase.ERROR, SyncPhase.OFFLINE})


@dataclass(frozen=True)
class SyncState:
    """Snapshot of the current sync state."""

    phase: SyncPhase = SyncPhase.IDLE
    message: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def in_progress(self) -> bool:
        """True while a pull is checking or syncing."""
        return self.phase in (SyncPhase.CHECKING, SyncPhase.SYNCING)

    @property
    def is_finished(self) -> bool:
        """True once a pull attempt has reached its outcome."""
        return self.phase in TERMINAL_PHASES

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dictionary."""
        data = asdict(self)
        data["phase"] = self.phase.value
        for name in ("started_at", "finished_at"):
            if data[name] is not None:
                data[name] = data[name].isoformat()
        return data


StateObserver = Callable[[SyncState], None]


class SyncStateBroadcaster:
    """Holds the latest sync state and notifies observers of changes.

    Observers are called synchronously with the new snapshot. Only the
    latest state is kept; there is no history or queue.
    """

    def __init__(self) -> None:
        self._state = SyncState()
        self._observers: dict[int, StateObserver] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def state(self) -> SyncState:
        """The latest state snapshot."""
        return self._state

    def set(self, **changes: Any) -> SyncState:
        """Merge changes into the state and notify observers.

        Args:
            **changes: Fields of SyncState to replace.

        Returns:
            The new state.
        """
        with self._lock:
            self._state = replace(self._state, **changes)
            state = self._state
            observers = list(self._observers.values())

        for observer in observers:
            try:
                observer(state)
            except Exception:
                logger.debug("Sync state observer %r failed", observer, exc_info=True)
        return state

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer.

        Args:
            observer: Called with each new SyncState.

        Returns:
            A function that removes the observer. Calling it twice is harmless.
        """
        with self._lock:
            handle = next(self._handles)
            self._observers[handle] = observer

        def unsubscribe() -> None:
            with self._lock:
                self._observers.pop(handle, None)

        return unsubscribe

    @property
    def observer_count(self) -> int:
        """Number of registered observers."""
        return len(self._observers)
