"""Configuration for the reminder scheduler."""
import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from processor.models import DEFAULT_REMINDER_RULES, ReminderRule

LOCAL_API_BASE_URL = 'http://localhost:3000/api'
DEPLOYED_API_BASE_URL = (
    'https://wits-buddy-g9esajarfqe3dmh6.southafricanorth-01.azurewebsites.net/api'
)
LOCAL_HOSTNAMES = ('localhost', '127.0.0.1')


def select_api_base_url(hostname: str) -> str:
    """Pick the local or deployed API base URL for a hostname."""
    if hostname.strip().lower() in LOCAL_HOSTNAMES:
        return LOCAL_API_BASE_URL
    return DEPLOYED_API_BASE_URL


@dataclass
class SchedulerConfig:
    """Settings for the scheduler, its API client and the email gate."""
    api_base_url: str = LOCAL_API_BASE_URL
    institution_domain: str = 'wits.ac.za'
    refresh_interval_seconds: float = 300
    group_batch_size: int = 5
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_delay: float = 1
    reminder_rules: Tuple[ReminderRule, ...] = field(
        default_factory=lambda: DEFAULT_REMINDER_RULES
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'SchedulerConfig':
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            SchedulerConfig
        """
        env = os.environ if environ is None else environ

        api_base_url = env.get('STUDY_BUDDY_API_URL') or select_api_base_url(
            env.get('STUDY_BUDDY_HOSTNAME', 'localhost')
        )

        return cls(
            api_base_url=api_base_url,
            institution_domain=env.get('INSTITUTION_DOMAIN', 'wits.ac.za'),
            refresh_interval_seconds=float(env.get('REFRESH_INTERVAL_SECONDS', '300')),
            group_batch_size=int(env.get('GROUP_BATCH_SIZE', '5')),
            timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
            max_retries=int(env.get('MAX_RETRIES', '3'))
        )

    @property
    def email_pattern(self) -> 're.Pattern':
        return re.compile(
            rf"^\d+@students\.{re.escape(self.institution_domain)}$",
            re.IGNORECASE
        )

    def is_institutional_email(self, email: Optional[str]) -> bool:
        """Return True if email is a student address of the institution."""
        if not email or not isinstance(email, str):
            return False
        return bool(self.email_pattern.match(email.strip()))
