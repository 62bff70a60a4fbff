"""Ledger tracking the dispatch state of each reminder."""
import logging
import threading
from typing import Dict

from processor.models import DedupKey, DispatchState

logger = logging.getLogger(__name__)


class DispatchLedger:
    """
    Per-reminder dispatch state machine.

    Transitions:
        ARMED -> DISPATCHING     begin()
        DISPATCHING -> SENT      mark_sent()
        DISPATCHING -> FAILED    mark_failed()
        FAILED -> DISPATCHING    begin() (retry)

    Keys never seen are ARMED. A key counts as sent while it is
    DISPATCHING or SENT, so a second dispatch for it is refused.
    """

    IN_FLIGHT_OR_DONE = (DispatchState.DISPATCHING, DispatchState.SENT)

    def __init__(self):
        self._states: Dict[DedupKey, DispatchState] = {}
        self._lock = threading.Lock()

    def begin(self, key: DedupKey) -> bool:
        """
        Claim a reminder for dispatch.

        Args:
            key: Reminder identity

        Returns:
            True if the caller should dispatch, False if it is a duplicate
        """
        with self._lock:
            if self._states.get(key) in self.IN_FLIGHT_OR_DONE:
                return False
            self._states[key] = DispatchState.DISPATCHING
            return True

    def mark_sent(self, key: DedupKey) -> None:
        with self._lock:
            self._states[key] = DispatchState.SENT

    def mark_failed(self, key: DedupKey) -> None:
        with self._lock:
            self._states[key] = DispatchState.FAILED
        logger.info(f"Reminder {key.event_id} ({key.rule_label}) released for retry")

    def state_of(self, key: DedupKey) -> DispatchState:
        with self._lock:
            return self._states.get(key, DispatchState.ARMED)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()

    def __contains__(self, key: DedupKey) -> bool:
        return self.state_of(key) in self.IN_FLIGHT_OR_DONE

    def __len__(self) -> int:
        with self._lock:
            return sum(
                1 for state in self._states.values()
                if state in self.IN_FLIGHT_OR_DONE
            )
