"""Event aggregator for normalizing activities and study group sessions."""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from processor.models import Event, EventKind

logger = logging.getLogger(__name__)

ISO_TIMESTAMP = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2})?)"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}(?::?\d{2})?)?$",
    re.IGNORECASE
)


class EventAggregator:
    """Aggregator that turns raw API records into upcoming reminder events."""

    DEFAULT_GROUP_LOCATION = 'Study Group Session'
    MIN_DURATION_HOURS = 1

    def upcoming_events(
        self,
        activities: List[Dict[str, Any]],
        groups: List[Dict[str, Any]],
        user_id: Optional[str],
        now: datetime
    ) -> List[Event]:
        """
        Merge activities and group sessions into a sorted list of future events.

        Args:
            activities: Raw activity records from the activities API
            groups: Raw group detail records with a valid schedule
            user_id: ID of the current user; activities owned by others are dropped
            now: Reference instant (naive local time)

        Returns:
            Events starting strictly after now, ascending by start time.
            Ties keep activity-then-group source order.
        """
        events = []

        for record in activities:
            try:
                event = self.normalize_activity(record, user_id)
            except Exception as e:
                logger.warning(
                    f"Failed to normalize activity '{record.get('id')}': {e}"
                )
                continue
            if event and event.start_at > now:
                events.append(event)

        for record in groups:
            try:
                event = self.normalize_group(record)
            except Exception as e:
                logger.warning(
                    f"Failed to normalize group '{record.get('id')}': {e}"
                )
                continue
            if event and event.start_at > now:
                events.append(event)

        # list.sort is stable, so equal start times keep source order
        events.sort(key=lambda event: event.start_at)

        logger.info(f"Found {len(events)} upcoming events")
        return events

    def normalize_activity(
        self,
        record: Dict[str, Any],
        user_id: Optional[str]
    ) -> Optional[Event]:
        """
        Normalize one activity record.

        Args:
            record: Activity as returned by GET /activities/user/{userId}
            user_id: ID of the current user

        Returns:
            Event, or None if the activity is completed, foreign or undated
        """
        if record.get('is_completed'):
            return None

        if user_id is None or str(record.get('user_id')) != str(user_id):
            return None

        start_at = self._parse_local_datetime(
            record.get('activity_date'),
            record.get('activity_time')
        )
        if start_at is None:
            logger.warning(
                f"Invalid date/time for activity '{record.get('title')}': "
                f"{record.get('activity_date')} {record.get('activity_time')}"
            )
            return None

        duration = record.get('duration_hours', record.get('duration'))

        group = record.get('study_groups') or {}

        return Event(
            id=str(record['id']),
            kind=EventKind.ACTIVITY,
            title=record.get('title') or 'Untitled activity',
            start_at=start_at,
            duration_hours=max(self.MIN_DURATION_HOURS, float(duration or 1)),
            description=record.get('description'),
            subject=record.get('subject') or group.get('subject'),
            location=record.get('location'),
            activity_type=record.get('activity_type')
        )

    def normalize_group(self, record: Dict[str, Any]) -> Optional[Event]:
        """
        Normalize one group detail record into a scheduled session.

        Args:
            record: Group as returned by GET /groups/{groupId}

        Returns:
            Event, or None if the group has no valid scheduled start/end pair
        """
        if not self.has_valid_schedule(record):
            return None

        start_at = self._parse_utc_wall_clock(record['scheduled_start'])

        return Event(
            id=str(record['id']),
            kind=EventKind.STUDY_GROUP,
            title=record.get('name') or 'Study group',
            start_at=start_at,
            duration_hours=self.calculate_duration(
                record['scheduled_start'],
                record['scheduled_end']
            ),
            description=record.get('description'),
            subject=record.get('subject'),
            location=self.DEFAULT_GROUP_LOCATION
        )

    def has_valid_schedule(self, record: Optional[Dict[str, Any]]) -> bool:
        """Return True if a group record carries a parseable start/end pair."""
        if not record or not record.get('is_scheduled'):
            return False

        start = record.get('scheduled_start')
        end = record.get('scheduled_end')
        if not start or not end:
            return False

        try:
            self._parse_iso(start)
            self._parse_iso(end)
        except (AttributeError, TypeError, ValueError):
            logger.warning(
                f"Invalid schedule for group '{record.get('id')}': {start} - {end}"
            )
            return False

        return True

    def calculate_duration(self, start: str, end: str) -> int:
        """
        Calculate a session's duration in whole hours.

        Args:
            start: ISO 8601 start timestamp
            end: ISO 8601 end timestamp

        Returns:
            Duration rounded up to the next hour, at least 1
        """
        if not start or not end:
            return self.MIN_DURATION_HOURS

        delta = self._parse_iso(end) - self._parse_iso(start)
        hours = delta.total_seconds() / 3600
        return max(self.MIN_DURATION_HOURS, math.ceil(hours))

    def _parse_local_datetime(
        self,
        date_str: Optional[str],
        time_str: Optional[str]
    ) -> Optional[datetime]:
        """
        Combine a date and a time string into a naive local datetime.

        Args:
            date_str: Date (YYYY-MM-DD)
            time_str: Time (HH:MM or HH:MM:SS)

        Returns:
            Naive datetime or None if parsing fails
        """
        if not date_str or not time_str:
            return None

        time_formats = ['%Y-%m-%d %H:%M', '%Y-%m-%d %H:%M:%S']

        for fmt in time_formats:
            try:
                return datetime.strptime(f"{date_str.strip()} {time_str.strip()}", fmt)
            except ValueError:
                continue

        return None

    def _parse_utc_wall_clock(self, value: str) -> datetime:
        """
        Take the UTC wall-clock components of a timestamp as local time.

        Args:
            value: ISO 8601 timestamp, with or without offset

        Returns:
            Naive datetime carrying the UTC year/month/day/hour/minute
        """
        parsed = self._parse_iso(value)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed.replace(second=0, microsecond=0)

    def _parse_iso(self, value: str) -> datetime:
        """
        Parse an ISO 8601 timestamp as PostgREST emits it.

        Fractional seconds of any length are cut or padded to microseconds,
        and 'Z', '+HH' and '+HHMM' offsets are rewritten as '+HH:MM'.

        Args:
            value: Timestamp string

        Returns:
            Datetime, aware if the value carried an offset

        Raises:
            ValueError: If the value is not an ISO 8601 timestamp
        """
        match = ISO_TIMESTAMP.match(value.strip())
        if not match:
            raise ValueError(f"Invalid ISO timestamp: {value!r}")

        text = match.group('base')

        fraction = match.group('fraction')
        if fraction:
            text += '.' + fraction[:6].ljust(6, '0')

        offset = match.group('offset')
        if offset and offset.upper() == 'Z':
            text += '+00:00'
        elif offset:
            sign, digits = offset[0], offset[1:].replace(':', '')
            text += f"{sign}{digits[:2]}:{digits[2:4] or '00'}"

        return datetime.fromisoformat(text)
