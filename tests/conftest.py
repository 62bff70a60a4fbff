"""Shared fixtures for reminder tests."""
from datetime import datetime
from unittest.mock import Mock

import pytest

from reminders.scheduler import destroy_scheduler

NOW = datetime(2026, 3, 2, 9, 0, 0)


class FakeTimer:
    """Timer handle that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class FakeTimerFactory:
    """Records every timer it creates."""

    def __init__(self):
        self.created = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.created.append(timer)
        return timer

    @property
    def live(self):
        return [timer for timer in self.created if timer.started and not timer.cancelled]


@pytest.fixture
def timer_factory():
    return FakeTimerFactory()


@pytest.fixture
def clock():
    return Mock(return_value=NOW)


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture(autouse=True)
def release_scheduler_slot():
    """Make sure no scheduler leaks between tests."""
    yield
    destroy_scheduler()
