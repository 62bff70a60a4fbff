"""Data models for reminder scheduling."""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import NamedTuple, Optional


class EventKind(Enum):
    """Source collection an event was derived from."""
    ACTIVITY = 'activity'
    STUDY_GROUP = 'study_group'


class SchedulerState(Enum):
    """Lifecycle states of the reminder scheduler."""
    UNINITIALIZED = 'uninitialized'
    INITIALIZING = 'initializing'
    ACTIVE = 'active'
    REFRESHING = 'refreshing'
    DESTROYED = 'destroyed'


class DispatchState(Enum):
    """Dispatch state of a single (event, rule, start) reminder."""
    ARMED = 'armed'
    DISPATCHING = 'dispatching'
    SENT = 'sent'
    FAILED = 'failed'


@dataclass
class User:
    """Authenticated user as reported by the auth collaborator."""
    id: str
    email: str
    name: Optional[str] = None


@dataclass
class Event:
    """Upcoming activity or scheduled study group session."""
    id: str
    kind: EventKind
    title: str
    start_at: datetime
    duration_hours: float
    description: Optional[str] = None
    subject: Optional[str] = None
    location: Optional[str] = None
    activity_type: Optional[str] = None

    @property
    def is_study_group(self) -> bool:
        return self.kind is EventKind.STUDY_GROUP


@dataclass(frozen=True)
class ReminderRule:
    """Lead time before an event's start at which a reminder fires."""
    label: str
    lead_time: timedelta


DEFAULT_REMINDER_RULES = (
    ReminderRule('23 hours before', timedelta(hours=23)),
    ReminderRule('5 hours before', timedelta(hours=5)),
    ReminderRule('1 hour before', timedelta(hours=1)),
    ReminderRule('5 minutes before', timedelta(minutes=5)),
)


class TimerKey(NamedTuple):
    """Identity of one armed timer."""
    event_id: str
    event_kind: EventKind
    rule_label: str

    @property
    def token(self) -> str:
        label = re.sub(r'\s+', '_', self.rule_label)
        return f"{self.event_id}_{self.event_kind.value}_{label}"


class DedupKey(NamedTuple):
    """Identity of one reminder dispatch."""
    event_id: str
    rule_label: str
    start_at_millis: int

    @classmethod
    def for_event(cls, event: Event, rule: ReminderRule) -> 'DedupKey':
        return cls(
            event_id=str(event.id),
            rule_label=rule.label,
            start_at_millis=int(event.start_at.timestamp() * 1000)
        )
