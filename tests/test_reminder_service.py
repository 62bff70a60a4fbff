"""Integration tests for the reminder service entry point."""
import io
import json
import logging
import os
import threading
from unittest.mock import Mock, patch

import pytest

from processor.models import SchedulerState, User
from reminder_service import JsonFormatter, main, setup_logging, user_from_env
from reminders.config import (
    DEPLOYED_API_BASE_URL,
    LOCAL_API_BASE_URL,
    SchedulerConfig,
    select_api_base_url,
)


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'LOG_LEVEL': 'INFO',
        'STUDY_BUDDY_HOSTNAME': 'localhost',
        'STUDY_BUDDY_USER_ID': 'u-1',
        'STUDY_BUDDY_USER_EMAIL': '12345678@students.wits.ac.za',
        'STUDY_BUDDY_USER_NAME': 'Thandi'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo setup_logging() so later tests keep pytest's handlers."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    urllib3_level = logging.getLogger('urllib3').level
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
    logging.getLogger('urllib3').setLevel(urllib3_level)


@pytest.fixture
def stop_event():
    event = threading.Event()
    event.set()
    return event


class TestReminderService:
    """Test cases for the service entry point."""

    @patch('reminder_service.destroy_scheduler')
    @patch('reminder_service.get_or_create_scheduler')
    def test_main_runs_until_stopped(
        self,
        mock_get_or_create,
        mock_destroy,
        mock_env,
        stop_event
    ):
        scheduler = Mock(is_active=True)
        mock_get_or_create.return_value = scheduler

        assert main(stop_event) == 0

        auth = mock_get_or_create.call_args.args[0]
        assert auth.get_current_user() == User(
            id='u-1', email='12345678@students.wits.ac.za', name='Thandi'
        )
        config = mock_get_or_create.call_args.kwargs['config']
        assert config.api_base_url == LOCAL_API_BASE_URL
        mock_destroy.assert_called_once_with()

    @patch('reminder_service.destroy_scheduler')
    @patch('reminder_service.get_or_create_scheduler')
    def test_main_inactive_scheduler_exits_nonzero(
        self,
        mock_get_or_create,
        mock_destroy,
        mock_env,
        stop_event
    ):
        mock_get_or_create.return_value = Mock(
            is_active=False,
            state=SchedulerState.INITIALIZING
        )

        assert main(stop_event) == 1
        mock_destroy.assert_called_once_with()

    def test_user_from_env_requires_id_and_email(self):
        assert user_from_env({'STUDY_BUDDY_USER_ID': 'u-1'}) is None
        assert user_from_env({}) is None

    def test_setup_logging(self):
        """Test logging configuration installs the JSON formatter."""
        setup_logging('DEBUG')

        root_logger = logging.getLogger()
        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)

        setup_logging('INFO')
        assert root_logger.level == logging.INFO

    def test_json_formatter(self):
        """Test JSON formatter output."""
        formatter = JsonFormatter()
        record = logging.LogRecord(
            name='reminders.scheduler',
            level=logging.WARNING,
            pathname='scheduler.py',
            lineno=1,
            msg='Duplicate reminder prevented: %s',
            args=('42',),
            exc_info=None
        )

        data = json.loads(formatter.format(record))

        assert data['level'] == 'WARNING'
        assert data['message'] == 'Duplicate reminder prevented: 42'
        assert data['logger'] == 'reminders.scheduler'
        assert 'timestamp' in data
        assert 'exception' not in data

    def test_json_formatter_includes_extra_fields(self):
        """Test fields passed through extra= reach the JSON line."""
        stream = io.StringIO()
        setup_logging('INFO', stream=stream)

        logging.getLogger('reminders.scheduler').error(
            'Error sending reminder',
            extra={'error_type': 'ReminderDispatchError', 'event_id': 42}
        )

        data = json.loads(stream.getvalue().splitlines()[-1])
        assert data['error_type'] == 'ReminderDispatchError'
        assert data['event_id'] == 42
        assert data['thread'] == 'MainThread'
        assert 'args' not in data
        assert 'lineno' not in data

    def test_setup_logging_quiets_urllib3(self):
        setup_logging('INFO')
        assert logging.getLogger('urllib3').level == logging.WARNING

        setup_logging('DEBUG')
        assert logging.getLogger('urllib3').level == logging.DEBUG


class TestSchedulerConfig:
    """Test cases for SchedulerConfig."""

    def test_defaults(self):
        config = SchedulerConfig.from_env({})

        assert config.api_base_url == LOCAL_API_BASE_URL
        assert config.refresh_interval_seconds == 300
        assert config.group_batch_size == 5
        assert len(config.reminder_rules) == 4

    def test_from_env_overrides(self):
        config = SchedulerConfig.from_env({
            'STUDY_BUDDY_HOSTNAME': 'wits-buddy.example.com',
            'INSTITUTION_DOMAIN': 'uct.ac.za',
            'REFRESH_INTERVAL_SECONDS': '60',
            'GROUP_BATCH_SIZE': '3',
            'MAX_RETRIES': '1'
        })

        assert config.api_base_url == DEPLOYED_API_BASE_URL
        assert config.refresh_interval_seconds == 60
        assert config.group_batch_size == 3
        assert config.max_retries == 1
        assert config.is_institutional_email('1234@students.uct.ac.za')
        assert not config.is_institutional_email('1234@students.wits.ac.za')

    def test_explicit_api_url_wins(self):
        config = SchedulerConfig.from_env({
            'STUDY_BUDDY_API_URL': 'http://staging:3000/api',
            'STUDY_BUDDY_HOSTNAME': 'wits-buddy.example.com'
        })

        assert config.api_base_url == 'http://staging:3000/api'

    def test_select_api_base_url(self):
        assert select_api_base_url('127.0.0.1') == LOCAL_API_BASE_URL
        assert select_api_base_url('LOCALHOST') == LOCAL_API_BASE_URL
        assert select_api_base_url('studybuddy.wits.ac.za') == DEPLOYED_API_BASE_URL

    @pytest.mark.parametrize('email', [
        '12345678@students.wits.ac.za',
        '12345678@Students.Wits.AC.ZA',
    ])
    def test_institutional_email_accepted(self, email):
        assert SchedulerConfig().is_institutional_email(email)

    @pytest.mark.parametrize('email', [
        None,
        '',
        'thandi@students.wits.ac.za',
        '12345678@wits.ac.za',
        '12345678@students.wits.ac.za.evil.com',
        '12345678@studentsxwits.ac.za',
    ])
    def test_institutional_email_rejected(self, email):
        assert not SchedulerConfig().is_institutional_email(email)


class TestCollaborators:
    """Test cases for the bundled auth and notifier."""

    def test_static_auth(self):
        from reminders.collaborators import StaticAuth

        user = User(id='u-1', email='12345678@students.wits.ac.za')

        assert StaticAuth(user).is_logged_in()
        assert StaticAuth(user).get_current_user() is user
        assert not StaticAuth().is_logged_in()

    def test_logging_notifier(self, caplog):
        from reminders.collaborators import LoggingNotifier

        with caplog.at_level(logging.INFO, logger='reminders.collaborators'):
            LoggingNotifier().show('Failed to send reminder', 'error')

        assert caplog.records[-1].levelno == logging.ERROR
        assert '[error] Failed to send reminder' in caplog.records[-1].getMessage()
