"""
Reminder scheduler.

Loads the current user's upcoming activities and scheduled study group
sessions, arms one timer per (event, reminder rule) whose fire time is still
ahead, and posts a reminder dispatch when a timer fires. Event data and
timers are rebuilt on a fixed refresh cadence.

Only one scheduler may hold the process-wide slot at a time. Use
get_or_create_scheduler() and destroy_scheduler() to manage it.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from api.study_buddy_client import StudyBuddyApiClient
from processor.event_aggregator import EventAggregator
from processor.models import (
    DedupKey,
    Event,
    ReminderRule,
    SchedulerState,
    TimerKey,
    User,
)
from processor.reminder_message import build_payload
from reminders.collaborators import AuthProvider, Notifier
from reminders.config import SchedulerConfig
from reminders.dispatch_ledger import DispatchLedger
from reminders.timer_registry import TimerFactory, TimerRegistry, default_timer_factory

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Client-side scheduler for event reminder dispatch."""

    def __init__(
        self,
        auth: AuthProvider,
        notifier: Notifier,
        client: Optional[StudyBuddyApiClient] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
        timer_factory: TimerFactory = default_timer_factory,
        aggregator: Optional[EventAggregator] = None
    ):
        """
        Initialize the scheduler. Nothing is loaded until start().

        Args:
            auth: Source of the current user
            notifier: Sink for user-visible toasts
            client: API client (default: built from config)
            config: Scheduler settings (default: SchedulerConfig())
            clock: Returns the current naive local time
            timer_factory: Creates timer handles for reminders and refresh ticks
            aggregator: Event normalizer (default: EventAggregator())
        """
        self.config = config or SchedulerConfig()
        self.auth = auth
        self.notifier = notifier
        self.client = client or StudyBuddyApiClient(
            self.config.api_base_url,
            timeout=self.config.timeout_seconds,
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay
        )
        self.clock = clock
        self.aggregator = aggregator or EventAggregator()

        self.timers = TimerRegistry(timer_factory)
        self.ledger = DispatchLedger()
        self._timer_factory = timer_factory
        self._refresh_timer: Any = None
        self._lock = threading.RLock()

        self.state = SchedulerState.UNINITIALIZED
        self.current_user: Optional[User] = None
        self.activities: List[Dict[str, Any]] = []
        self.scheduled_groups: List[Dict[str, Any]] = []

    @property
    def is_active(self) -> bool:
        return self.state in (SchedulerState.ACTIVE, SchedulerState.REFRESHING)

    @property
    def is_destroyed(self) -> bool:
        return self.state is SchedulerState.DESTROYED

    def start(self) -> SchedulerState:
        """
        Initialize the scheduler once.

        The scheduler becomes ACTIVE only for a logged-in user with an
        institutional student email. Otherwise it stays INITIALIZING for
        good. Calls after the first are no-ops.

        Returns:
            State after the call
        """
        with self._lock:
            if self.state is not SchedulerState.UNINITIALIZED:
                logger.warning(
                    f"Reminder scheduler already started ({self.state.value}), skipping"
                )
                return self.state
            self.state = SchedulerState.INITIALIZING

        logger.info("Initializing reminder scheduler")

        user = self.auth.get_current_user()
        if user is None:
            logger.warning("No user logged in, reminder scheduler will not start")
            return self.state

        if not self.config.is_institutional_email(user.email):
            logger.warning(
                f"Reminder scheduler: {user.email} is not a "
                f"students.{self.config.institution_domain} address"
            )
            return self.state

        with self._lock:
            self.current_user = user

        self.load_user_data()

        with self._lock:
            if self.is_destroyed:
                return self.state
            self.schedule_all_reminders()
            self._arm_refresh_tick()
            self.state = SchedulerState.ACTIVE

        logger.info(
            f"Reminder scheduler active for {user.email} "
            f"with {len(self.timers)} reminders armed"
        )
        return self.state

    def load_user_data(self) -> None:
        """
        Reload activities and scheduled groups for the current user.

        Both sources load in parallel. A failing source yields an empty list.
        Results are discarded if the scheduler was destroyed meanwhile.
        """
        user = self.current_user
        if user is None:
            return

        with ThreadPoolExecutor(max_workers=2) as executor:
            activities_future = executor.submit(self._load_activities, user.id)
            groups_future = executor.submit(self._load_scheduled_groups, user.id)
            activities = activities_future.result()
            scheduled_groups = groups_future.result()

        with self._lock:
            if self.is_destroyed:
                logger.info("Scheduler destroyed during load, discarding results")
                return
            self.activities = activities
            self.scheduled_groups = scheduled_groups

        logger.info(
            f"Loaded {len(activities)} activities and "
            f"{len(scheduled_groups)} scheduled groups for reminders"
        )

    def get_all_upcoming_events(self) -> List[Event]:
        """Return future events from loaded data, ascending by start time."""
        with self._lock:
            activities = list(self.activities)
            scheduled_groups = list(self.scheduled_groups)
            user = self.current_user

        return self.aggregator.upcoming_events(
            activities,
            scheduled_groups,
            user.id if user else None,
            self.clock()
        )

    def schedule_all_reminders(self) -> int:
        """
        Arm reminder timers for every upcoming event.

        Safe to call repeatedly: each event's existing timers are cancelled
        before its rules are re-armed.

        Returns:
            Number of timers armed by this call
        """
        with self._lock:
            if self.is_destroyed or self.current_user is None:
                return 0

            events = self.get_all_upcoming_events()
            logger.info(f"Scheduling reminders for {len(events)} events")

            armed = 0
            for event in events:
                armed += self.schedule_reminders_for_event(event)

        logger.info(f"Total reminder timers armed: {len(self.timers)}")
        return armed

    def schedule_reminders_for_event(self, event: Event) -> int:
        """
        Arm timers for one event's rules whose fire time is still ahead.

        Args:
            event: Upcoming event

        Returns:
            Number of timers armed, 0 once destroyed
        """
        with self._lock:
            if self.is_destroyed:
                return 0

            now = self.clock()
            self.timers.cancel_event(event.id, event.kind)

            armed = 0
            for rule in self.config.reminder_rules:
                fire_at = event.start_at - rule.lead_time
                if fire_at <= now:
                    continue

                key = TimerKey(event.id, event.kind, rule.label)
                delay = (fire_at - now).total_seconds()
                self.timers.arm(key, delay, partial(self._fire_reminder, event, rule))
                armed += 1

                logger.debug(
                    f"Scheduled {rule.label} reminder for '{event.title}' at {fire_at}"
                )

        return armed

    def send_reminder(self, event: Event, rule: ReminderRule) -> bool:
        """
        Dispatch one reminder, at most once per (event, rule, start time).

        The reminder is marked before the request goes out. If the request
        fails the mark is released so a later trigger can retry.

        Args:
            event: Event the reminder is about
            rule: Rule that triggered the reminder

        Returns:
            True if the server accepted the dispatch
        """
        with self._lock:
            user = self.current_user

        if user is None or not user.email:
            logger.error("No user email available for reminder")
            return False

        if not self.config.is_institutional_email(user.email):
            logger.error(f"Cannot send reminder: invalid email {user.email}")
            return False

        key = DedupKey.for_event(event, rule)

        # destroy() clears the ledger under the same lock
        with self._lock:
            if self.is_destroyed:
                logger.info(f"Scheduler destroyed, dropping reminder for '{event.title}'")
                return False
            if not self.ledger.begin(key):
                logger.warning(
                    f"Duplicate reminder prevented: {key.event_id} "
                    f"({key.rule_label}, {key.start_at_millis})"
                )
                return False

        payload = build_payload(event, rule, user)
        logger.info(f"Sending reminder for: {event.title} ({rule.label})")

        try:
            self.client.send_reminder(payload)
        except Exception as e:
            logger.error(
                f"Error sending reminder for '{event.title}': {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            with self._lock:
                if not self.is_destroyed:
                    self.ledger.mark_failed(key)
            self._notify('Failed to send reminder', 'error')
            return False

        with self._lock:
            if not self.is_destroyed:
                self.ledger.mark_sent(key)

        logger.info(f"Reminder sent successfully for: {event.title}")
        self._notify(f"Reminder sent for: {event.title}", 'success')
        return True

    def refresh_reminders(self) -> bool:
        """
        Reload event data and rebuild every armed timer.

        Only runs from ACTIVE. A refresh requested while another is in
        progress is skipped.

        Returns:
            True if the refresh ran to completion
        """
        with self._lock:
            if self.state is SchedulerState.REFRESHING:
                logger.warning("Refresh already in progress, skipping")
                return False
            if self.state is not SchedulerState.ACTIVE:
                logger.warning(f"Cannot refresh reminders while {self.state.value}")
                return False
            self.state = SchedulerState.REFRESHING

        logger.info("Refreshing reminders")

        try:
            self.load_user_data()

            with self._lock:
                if self.is_destroyed:
                    return False
                self.timers.cancel_all()
                self.schedule_all_reminders()
        finally:
            with self._lock:
                if self.state is SchedulerState.REFRESHING:
                    self.state = SchedulerState.ACTIVE

        return True

    def manual_refresh(self) -> bool:
        """Refresh on user request and confirm with a toast."""
        refreshed = self.refresh_reminders()
        if refreshed:
            self._notify('Reminders refreshed', 'success')
        return refreshed

    def destroy(self) -> None:
        """Cancel all timers and the refresh tick, and release the singleton slot."""
        with self._lock:
            if self.is_destroyed:
                return

            logger.info("Destroying reminder scheduler")
            self.state = SchedulerState.DESTROYED

            if self._refresh_timer is not None:
                self._refresh_timer.cancel()
                self._refresh_timer = None

            self.timers.cancel_all()
            self.ledger.clear()

        _release_slot(self)
        logger.info("Reminder scheduler destroyed")

    def _load_activities(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            return self.client.fetch_activities(user_id)
        except Exception as e:
            logger.error(
                f"Error loading activities for reminders: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return []

    def _load_scheduled_groups(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Load detail records of the user's groups that have a schedule.

        Group details are fetched in batches of config.group_batch_size. Each
        batch completes before the next starts; failed fetches are dropped.

        Args:
            user_id: ID of the user

        Returns:
            Group records with a valid scheduled start/end pair
        """
        try:
            group_ids = self.client.fetch_group_ids(user_id)
        except Exception as e:
            logger.error(
                f"Error loading groups for reminders: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return []

        batch_size = max(1, self.config.group_batch_size)
        scheduled_groups = []

        for i in range(0, len(group_ids), batch_size):
            batch = group_ids[i:i + batch_size]

            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = [
                    (group_id, executor.submit(self.client.fetch_group, group_id))
                    for group_id in batch
                ]

            for group_id, future in futures:
                try:
                    group = future.result()
                except Exception as e:
                    logger.warning(f"Error fetching group {group_id} for reminders: {e}")
                    continue

                if self.aggregator.has_valid_schedule(group):
                    scheduled_groups.append(group)

        return scheduled_groups

    def _fire_reminder(self, event: Event, rule: ReminderRule) -> None:
        logger.info(f"Executing reminder: {TimerKey(event.id, event.kind, rule.label).token}")
        try:
            self.send_reminder(event, rule)
        except Exception as e:
            logger.error(f"Unhandled error in reminder callback: {e}", exc_info=True)

    def _arm_refresh_tick(self) -> None:
        self._refresh_timer = self._timer_factory(
            self.config.refresh_interval_seconds,
            self._on_refresh_tick
        )
        self._refresh_timer.start()

    def _on_refresh_tick(self) -> None:
        if self.is_destroyed:
            return

        try:
            self.refresh_reminders()
        except Exception as e:
            logger.error(f"Periodic reminder refresh failed: {e}", exc_info=True)

        with self._lock:
            if not self.is_destroyed:
                self._arm_refresh_tick()

    def _notify(self, message: str, kind: str) -> None:
        try:
            self.notifier.show(message, kind)
        except Exception as e:
            logger.warning(f"Notifier failed to show '{message}': {e}")


# Process-wide scheduler slot
_instance: Optional[ReminderScheduler] = None
_instance_lock = threading.Lock()


def get_or_create_scheduler(
    auth: AuthProvider,
    notifier: Notifier,
    **kwargs: Any
) -> ReminderScheduler:
    """
    Return the scheduler holding the process-wide slot, creating and
    starting one if the slot is empty.

    An existing instance is returned unchanged; its data is not reloaded
    and no timers are re-armed.

    Args:
        auth: Source of the current user
        notifier: Sink for user-visible toasts
        **kwargs: Extra ReminderScheduler arguments for a new instance

    Returns:
        The scheduler in the slot
    """
    global _instance

    with _instance_lock:
        if _instance is not None:
            logger.warning("Reminder scheduler already exists, reusing it")
            return _instance
        scheduler = ReminderScheduler(auth, notifier, **kwargs)
        _instance = scheduler

    scheduler.start()
    return scheduler


def get_scheduler() -> Optional[ReminderScheduler]:
    """Return the scheduler in the process-wide slot, if any."""
    return _instance


def destroy_scheduler() -> None:
    """Destroy the scheduler in the process-wide slot, if any."""
    with _instance_lock:
        scheduler = _instance

    if scheduler is not None:
        scheduler.destroy()


def _release_slot(scheduler: ReminderScheduler) -> None:
    global _instance
    with _instance_lock:
        if _instance is scheduler:
            _instance = None
