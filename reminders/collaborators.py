"""Auth and notification collaborators used by the scheduler."""
import logging
from typing import Optional, Protocol

from processor.models import User

logger = logging.getLogger(__name__)


class AuthProvider(Protocol):
    """Source of the authenticated user."""

    def get_current_user(self) -> Optional[User]:
        ...

    def is_logged_in(self) -> bool:
        ...


class Notifier(Protocol):
    """User-visible toast sink. Fire-and-forget."""

    def show(self, message: str, kind: str = 'info') -> None:
        ...


class StaticAuth:
    """Auth provider holding a fixed user, or nobody."""

    def __init__(self, user: Optional[User] = None):
        self.user = user

    def get_current_user(self) -> Optional[User]:
        return self.user

    def is_logged_in(self) -> bool:
        return self.user is not None


class LoggingNotifier:
    """Notifier that writes toasts to the log."""

    LEVELS = {
        'success': logging.INFO,
        'info': logging.INFO,
        'error': logging.ERROR,
    }

    def show(self, message: str, kind: str = 'info') -> None:
        logger.log(self.LEVELS.get(kind, logging.INFO), f"[{kind}] {message}")
