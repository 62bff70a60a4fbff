"""Registry of armed reminder timers."""
import logging
import threading
from typing import Any, Callable, Dict, List

from processor.models import EventKind, TimerKey

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]


def default_timer_factory(interval: float, function: Callable[[], None]) -> threading.Timer:
    """Create a daemon threading.Timer."""
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


class TimerRegistry:
    """
    Map of TimerKey to pending timer handles.

    At most one timer exists per key. Arming a key that already holds a
    timer cancels the old one first. A fired timer removes its own entry
    before running its callback.
    """

    def __init__(self, timer_factory: TimerFactory = default_timer_factory):
        """
        Initialize the registry.

        Args:
            timer_factory: Callable (interval_seconds, function) returning a
                handle with start() and cancel()
        """
        self._timer_factory = timer_factory
        self._timers: Dict[TimerKey, Any] = {}
        self._lock = threading.Lock()

    def arm(self, key: TimerKey, delay: float, callback: Callable[[], None]) -> Any:
        """
        Arm a timer for key, replacing any timer already armed for it.

        Args:
            key: Timer identity
            delay: Seconds until the callback fires
            callback: Function to run when the timer fires

        Returns:
            The started timer handle
        """
        handle = None

        def fire():
            self._release(key, handle)
            callback()

        handle = self._timer_factory(delay, fire)

        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = handle
            handle.start()

        logger.debug(f"Armed timer {key.token} in {delay:.0f}s")
        return handle

    def cancel(self, key: TimerKey) -> bool:
        """Cancel the timer armed for key. Returns True if one existed."""
        with self._lock:
            handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_event(self, event_id: str, event_kind: EventKind) -> int:
        """
        Cancel every timer armed for one event.

        Args:
            event_id: ID of the event
            event_kind: Source collection of the event

        Returns:
            Number of timers cancelled
        """
        with self._lock:
            keys = [
                key for key in self._timers
                if key.event_id == event_id and key.event_kind is event_kind
            ]
            handles = [self._timers.pop(key) for key in keys]

        for handle in handles:
            handle.cancel()

        if handles:
            logger.debug(
                f"Cleared {len(handles)} existing reminders for "
                f"{event_kind.value} {event_id}"
            )
        return len(handles)

    def cancel_all(self) -> int:
        """Cancel every armed timer. Returns the number cancelled."""
        with self._lock:
            handles = list(self._timers.values())
            self._timers.clear()

        for handle in handles:
            handle.cancel()

        logger.info(f"Cleared all {len(handles)} reminder timers")
        return len(handles)

    def keys(self) -> List[TimerKey]:
        with self._lock:
            return list(self._timers)

    def __contains__(self, key: TimerKey) -> bool:
        with self._lock:
            return key in self._timers

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)

    def _release(self, key: TimerKey, handle: Any) -> None:
        # Only drop the entry if it still belongs to the firing handle
        with self._lock:
            if self._timers.get(key) is handle:
                del self._timers[key]
