"""REST client for the Study Buddy API."""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class ReminderDispatchError(Exception):
    """Raised when the reminders-send endpoint rejects a dispatch."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class StudyBuddyApiClient:
    """Client for the activities, groups and reminders endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 3,
        retry_delay: float = 1,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the API client.

        Args:
            base_url: API base URL, e.g. http://localhost:3000/api
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per GET request (default: 3)
            retry_delay: Base delay in seconds for exponential backoff
            session: Optional requests session to reuse
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def fetch_activities(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Fetch a user's incomplete personal activities.

        Args:
            user_id: ID of the user

        Returns:
            List of raw activity records
        """
        data = self._get_json(
            f"/activities/user/{user_id}",
            params={'is_completed': 'false'}
        )
        activities = data.get('activities') or []
        logger.info(f"Fetched {len(activities)} activities for user {user_id}")
        return activities

    def fetch_group_ids(self, user_id: str) -> List[str]:
        """
        Fetch the IDs of a user's active group memberships.

        Args:
            user_id: ID of the user

        Returns:
            List of group IDs
        """
        data = self._get_json(
            f"/groups/user/{user_id}",
            params={'status': 'active'}
        )
        memberships = data.get('groups') or []
        group_ids = [
            membership['group_id'] for membership in memberships
            if membership.get('group_id') is not None
        ]
        logger.info(f"Fetched {len(group_ids)} active groups for user {user_id}")
        return group_ids

    def fetch_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one group's detail record.

        Args:
            group_id: ID of the group

        Returns:
            Group record, or None if the response carries no group
        """
        data = self._get_json(f"/groups/{group_id}")
        return data.get('group')

    def send_reminder(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Request server-side delivery of a reminder.

        The request is sent once; retrying is left to the caller.

        Args:
            payload: Body with to, subject, message, event_type, event_id,
                reminder_time and user_name

        Returns:
            Decoded JSON response

        Raises:
            ReminderDispatchError: If the server answers with a non-2xx status
            requests.RequestException: If the request itself fails
        """
        response = self.session.post(
            f"{self.base_url}/reminders/send",
            json=payload,
            timeout=self.timeout
        )

        if not response.ok:
            raise ReminderDispatchError(
                response.status_code,
                self._error_message(response)
            )

        try:
            return response.json()
        except ValueError:
            return {}

    def _get_json(
        self,
        path: str,
        params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        GET a JSON document with retry logic.

        Args:
            path: Path relative to the base URL
            params: Optional query parameters

        Returns:
            Decoded JSON object

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"GET {url} (attempt {attempt + 1}/{self.max_retries})")
                response = self.session.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                return response.json() or {}

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    # Calculate exponential backoff delay
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Request to {url} failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} attempts to {url} failed. Last error: {e}"
                    )
                    raise

    def _error_message(self, response: requests.Response) -> str:
        try:
            error = response.json().get('error')
        except (ValueError, AttributeError):
            error = None
        return error or f"HTTP error! status: {response.status_code}"
