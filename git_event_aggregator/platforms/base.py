"""
Base Platform Client

Shared plumbing for the clients that pull activity from a hosting
platform's REST API.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from git_event_aggregator import config
from git_event_aggregator.errors import PlatformAPIError, TransientFetchError
from git_event_aggregator.models import to_utc_naive

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (408, 429, 500, 502, 503, 504)


@dataclass(frozen=True)
class RawActivity:
    """One activity item as delivered by a platform, not validated yet."""

    native_event_id: Optional[str]
    project_native_id: Optional[int]
    project_name: Optional[str]
    project_url: Optional[str]
    action: Optional[str]
    occurred_at: Optional[datetime]


@dataclass
class FetchResult:
    items: List[RawActivity] = field(default_factory=list)
    # The platform told us nothing changed since the previous request
    not_modified: bool = False


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp into naive UTC, or None if unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        logger.warning(f"Could not parse timestamp '{value}'")
        return None
    return to_utc_naive(parsed)


def snake_case(name: str) -> str:
    """``PullRequest`` -> ``pull_request``, ``pushed to`` -> ``pushed_to``."""
    name = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name.strip())
    return re.sub(r"[\s\-]+", "_", name).lower()


class PlatformClient(ABC):
    """
    Abstract base class for platform API clients.

    Subclasses implement ``_fetch``; callers use ``fetch_since`` which
    enforces the "strictly after the checkpoint, oldest first" contract.
    """

    PLATFORM_NAME: str = "base"

    def __init__(self, api_url: str, token: str = "", timeout: float = None):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT_SECONDS
        self.session = requests.Session()
        self.session.headers["User-Agent"] = "Git-Event-Aggregator"
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning(
                f"No {self.PLATFORM_NAME} token provided. API rate limits will be restricted."
            )

    def fetch_since(self, since: Optional[datetime]) -> FetchResult:
        """
        Fetch activity newer than ``since`` (everything if None).

        Returns:
            FetchResult with items sorted by time, oldest first. Items
            without a timestamp are kept so that they can be reported.
        """
        if since is not None:
            since = to_utc_naive(since)
        result = self._fetch(since)
        items = [
            replace(item, occurred_at=to_utc_naive(item.occurred_at))
            if item.occurred_at is not None
            else item
            for item in result.items
        ]
        items = [
            item
            for item in items
            if since is None or item.occurred_at is None or item.occurred_at > since
        ]
        items.sort(key=lambda item: item.occurred_at or datetime.min)
        logger.info(
            f"Fetched {len(items)} items from {self.PLATFORM_NAME} "
            f"({len(result.items) - len(items)} at or before {since} dropped)"
        )
        return FetchResult(items=items, not_modified=result.not_modified)

    @abstractmethod
    def _fetch(self, since: Optional[datetime]) -> FetchResult:
        pass

    def acknowledge(self):
        """Called once the items of the last fetch are committed."""

    def _get(self, url: str, params: Dict[str, Any] = None, headers: Dict[str, str] = None) -> requests.Response:
        """
        GET ``url`` and sort failures into transient and permanent ones.

        A 304 response is returned as is; callers asking with an ETag
        handle it.
        """
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientFetchError(f"{self.PLATFORM_NAME}: request to {url} failed: {e}") from e

        status = response.status_code
        if status == 200 or status == 304:
            return response
        if status in RETRYABLE_STATUS or self._is_rate_limited(response):
            reset = response.headers.get("X-RateLimit-Reset") or response.headers.get("RateLimit-Reset")
            if reset:
                logger.info(f"{self.PLATFORM_NAME} rate limit will reset at: {reset}")
            raise TransientFetchError(f"{self.PLATFORM_NAME}: {url} answered {status}")
        logger.error(f"Response: {response.text[:500]}")
        raise PlatformAPIError(f"{self.PLATFORM_NAME}: {url} answered {status}")

    def _json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PlatformAPIError(
                f"{self.PLATFORM_NAME}: invalid JSON in response: {response.text[:200]}"
            ) from e

    @staticmethod
    def _is_rate_limited(response: requests.Response) -> bool:
        return response.status_code == 403 and (
            response.headers.get("X-RateLimit-Remaining") == "0"
            or response.headers.get("RateLimit-Remaining") == "0"
        )

    def close(self):
        self.session.close()
