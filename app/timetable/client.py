"""
HTTP client for the upstream timetable site.

Transient failures (connection errors, timeouts, 5xx) are retried with
exponential backoff. The cache layer above never retries on its own.
"""
import logging
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from config.settings import settings

logger = logging.getLogger("timetable.client")


class UpstreamError(Exception):
    """Raised when the timetable site cannot serve a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientUpstreamError(UpstreamError):
    """Upstream failure worth retrying (network error or 5xx)."""


class TimetableClient:
    """
    Thin requests.Session wrapper for timetable.tusur.ru and tusur.ru.

    Usage:
        client = TimetableClient()
        page = client.get_text(client.faculties_url())
    """

    def __init__(
        self,
        base_url: str = settings.timetable_base_url,
        timeout: float = settings.request_timeout,
        retry_attempts: int = settings.upstream_retry_attempts,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self._session = session or requests.Session()

    # URL helpers

    def faculties_url(self) -> str:
        return f"{self.base_url}/faculties"

    def faculty_url(self, faculty: str) -> str:
        return f"{self.base_url}/faculties/{faculty}"

    def group_url(self, faculty: str, group: str) -> str:
        return f"{self.base_url}/faculties/{faculty}/groups/{group}"

    # Requests

    def get_text(self, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        """GET a page and return its body text."""
        return self._get_with_retry(url, params).text

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a JSON document."""
        response = self._get_with_retry(url, params)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from {url}: {e}") from e

    def _get_with_retry(self, url: str, params: Optional[Dict[str, Any]]) -> requests.Response:
        fetch = retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
            retry=retry_if_exception_type(TransientUpstreamError),
            reraise=True,
        )(self._get)
        return fetch(url, params)

    def _get(self, url: str, params: Optional[Dict[str, Any]]) -> requests.Response:
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"Upstream unreachable: {url} ({e})")
            raise TransientUpstreamError(f"Failed to reach {url}: {e}") from e
        except requests.RequestException as e:
            raise UpstreamError(f"Request to {url} failed: {e}") from e

        if response.status_code >= 500:
            logger.warning(f"Upstream error {response.status_code}: {url}")
            raise TransientUpstreamError(
                f"Upstream returned {response.status_code} for {url}",
                status=response.status_code,
            )
        if not response.ok:
            raise UpstreamError(
                f"Upstream returned {response.status_code} for {url}",
                status=response.status_code,
            )
        return response

    def close(self) -> None:
        self._session.close()
