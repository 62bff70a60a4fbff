"""Process entry point for the Study Buddy reminder scheduler."""
import json
import logging
import os
import threading
from typing import Mapping, Optional, TextIO

from processor.models import User
from reminders.collaborators import LoggingNotifier, StaticAuth
from reminders.config import SchedulerConfig
from reminders.scheduler import destroy_scheduler, get_or_create_scheduler


# Attributes every LogRecord carries; anything else came in through extra=
RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord('', 0, '', 0, '', (), None)).keys()
) | {'message', 'asctime'}

QUIET_LOGGERS = ('urllib3',)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with extra= fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage()
        }

        for name, value in vars(record).items():
            if name not in RESERVED_RECORD_ATTRS and name not in entry:
                entry[name] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(log_level: str = 'INFO', stream: Optional[TextIO] = None) -> None:
    """
    Send all logging to a single JSON handler.

    Timer and loader threads log through the same root handler. urllib3
    connection chatter is held at WARNING unless log_level is DEBUG.

    Args:
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR)
        stream: Output stream (default: stderr)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def user_from_env(environ: Mapping[str, str]) -> Optional[User]:
    """
    Build the logged-in user from environment variables.

    Args:
        environ: Mapping with STUDY_BUDDY_USER_ID, STUDY_BUDDY_USER_EMAIL
            and optionally STUDY_BUDDY_USER_NAME

    Returns:
        User, or None if ID or email is missing
    """
    user_id = environ.get('STUDY_BUDDY_USER_ID')
    email = environ.get('STUDY_BUDDY_USER_EMAIL')
    if not user_id or not email:
        return None
    return User(id=user_id, email=email, name=environ.get('STUDY_BUDDY_USER_NAME'))


def main(stop_event: Optional[threading.Event] = None) -> int:
    """
    Run the reminder scheduler until interrupted.

    Args:
        stop_event: Event that ends the run when set (default: wait for Ctrl-C)

    Returns:
        0 on clean shutdown, 1 if the scheduler never became active
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)

    config = SchedulerConfig.from_env()
    logger.info(
        "Reminder service starting",
        extra={
            'api_base_url': config.api_base_url,
            'refresh_interval_seconds': config.refresh_interval_seconds
        }
    )

    scheduler = get_or_create_scheduler(
        StaticAuth(user_from_env(os.environ)),
        LoggingNotifier(),
        config=config
    )

    if not scheduler.is_active:
        logger.error(f"Reminder scheduler did not start (state: {scheduler.state.value})")
        destroy_scheduler()
        return 1

    stop_event = stop_event or threading.Event()
    try:
        stop_event.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        destroy_scheduler()

    logger.info("Reminder service stopped")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
