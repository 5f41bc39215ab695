"""
GitHub Client

Pulls the public activity of one user from the GitHub REST API.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from git_event_aggregator import config
from git_event_aggregator.platforms.base import (
    FetchResult,
    PlatformClient,
    RawActivity,
    parse_timestamp,
    snake_case,
)

logger = logging.getLogger(__name__)


def canonical_github_action(event_type: str, payload: Dict[str, Any]) -> Optional[str]:
    """``PushEvent`` -> ``push``, ``PullRequestEvent``/opened -> ``pull_request.opened``."""
    if not event_type:
        return None
    if event_type.endswith("Event"):
        event_type = event_type[: -len("Event")]
    action = snake_case(event_type)
    sub_action = (payload or {}).get("action")
    if sub_action:
        action = f"{action}.{snake_case(sub_action)}"
    return action


def parse_next_link(link_header: str) -> Optional[str]:
    """
    Extract the rel="next" url from a Link header like
    ``<https://api.github.com/user/1/events?page=2>; rel="next", <...>; rel="last"``.
    """
    for link in (link_header or "").split(","):
        parts = link.split(";")
        if len(parts) != 2 or parts[1].strip() != 'rel="next"':
            continue
        url_part = parts[0].strip()
        if url_part.startswith("<") and url_part.endswith(">"):
            return url_part[1:-1]
    return None


class GitHubClient(PlatformClient):
    PLATFORM_NAME = "github"

    def __init__(
        self,
        username: str,
        token: str = "",
        api_url: str = None,
        per_page: int = None,
        max_pages: int = None,
        timeout: float = None,
    ):
        super().__init__(api_url or config.GITHUB_API_URL, token, timeout)
        self.username = username
        self.per_page = per_page or config.PER_PAGE
        self.max_pages = max_pages or config.MAX_PAGES_PER_SYNC
        self.session.headers["Accept"] = "application/vnd.github+json"
        self.session.headers["X-GitHub-Api-Version"] = "2022-11-28"
        # ETag of the first page of the last acknowledged fetch
        self._etag: Optional[str] = None
        self._pending_etag: Optional[str] = None

    def _fetch(self, since: Optional[datetime]) -> FetchResult:
        next_url = f"{self.api_url}/users/{self.username}/events"
        params = {"per_page": self.per_page}
        items: List[RawActivity] = []
        page = 1

        while next_url and page <= self.max_pages:
            headers = {}
            if page == 1 and self._etag:
                headers["If-None-Match"] = self._etag
            logger.info(f"Fetching page {page} from {next_url}")
            response = self._get(next_url, params=params, headers=headers)

            if response.status_code == 304:
                logger.info("GitHub answered 304 Not Modified, no new events")
                return FetchResult(not_modified=True)

            if page == 1:
                self._pending_etag = response.headers.get("ETag")

            events = self._json(response)
            if not events:
                break
            items.extend(self._to_activity(event) for event in events)

            oldest = parse_timestamp(events[-1].get("created_at"))
            if since is not None and oldest is not None and oldest <= since:
                # Pages are newest first; the rest is already synchronized
                break

            next_url = parse_next_link(response.headers.get("Link", ""))
            # The next link already carries the query string
            params = None
            page += 1

        return FetchResult(items=items)

    def _to_activity(self, event: Dict[str, Any]) -> RawActivity:
        repo = event.get("repo") or {}
        repo_name = repo.get("name")
        return RawActivity(
            native_event_id=str(event["id"]) if event.get("id") else None,
            project_native_id=repo.get("id"),
            project_name=repo_name,
            project_url=f"https://github.com/{repo_name}" if repo_name else None,
            action=canonical_github_action(event.get("type"), event.get("payload")),
            occurred_at=parse_timestamp(event.get("created_at")),
        )

    def acknowledge(self):
        # Only remember the ETag once the fetched items are committed,
        # otherwise a failed cycle would be answered with 304 next time.
        if self._pending_etag:
            self._etag = self._pending_etag
        self._pending_etag = None
