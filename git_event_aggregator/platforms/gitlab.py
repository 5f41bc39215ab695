"""
GitLab Client

Pulls the contribution events of one user from the GitLab REST API (v4).
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from git_event_aggregator import config
from git_event_aggregator.errors import PlatformAPIError
from git_event_aggregator.platforms.base import (
    FetchResult,
    PlatformClient,
    RawActivity,
    parse_timestamp,
    snake_case,
)

logger = logging.getLogger(__name__)


def canonical_gitlab_action(action_name: str, target_type: Optional[str]) -> Optional[str]:
    """``pushed to`` -> ``push``, ``opened`` on MergeRequest -> ``merge_request.opened``."""
    if not action_name or not action_name.strip():
        return None
    if action_name.startswith("pushed"):
        return "push"
    action = snake_case(action_name)
    if target_type:
        return f"{snake_case(target_type)}.{action}"
    return action


class GitLabClient(PlatformClient):
    PLATFORM_NAME = "gitlab"

    def __init__(
        self,
        user_id: str,
        token: str = "",
        api_url: str = None,
        per_page: int = None,
        max_pages: int = None,
        timeout: float = None,
    ):
        super().__init__(api_url or config.GITLAB_API_URL, token, timeout)
        self.user_id = user_id
        self.per_page = per_page or config.PER_PAGE
        self.max_pages = max_pages or config.MAX_PAGES_PER_SYNC
        # project id -> (name_with_namespace, web_url)
        self._projects: Dict[int, Tuple[str, str]] = {}

    def _fetch(self, since: Optional[datetime]) -> FetchResult:
        url = f"{self.api_url}/users/{self.user_id}/events"
        params: Dict[str, Any] = {"per_page": self.per_page, "sort": "asc"}
        if since is not None:
            # "after" is a date and exclusive; start one day earlier
            params["after"] = (since.date() - timedelta(days=1)).isoformat()

        items: List[RawActivity] = []
        page = 1
        while page and page <= self.max_pages:
            params["page"] = page
            logger.info(f"Fetching page {page} from {url}")
            response = self._get(url, params=params)
            events = self._json(response)
            if not isinstance(events, list):
                raise PlatformAPIError(f"gitlab: expected a list of events, got {type(events).__name__}")
            items.extend(self._to_activity(event) for event in events)

            total_pages = response.headers.get("x-total-pages")
            if page == 1 and total_pages and int(total_pages) > self.max_pages:
                logger.warning(
                    f"GitLab reports {total_pages} pages, only {self.max_pages} are fetched per sync"
                )
            next_page = response.headers.get("x-next-page")
            page = int(next_page) if next_page else None

        return FetchResult(items=items)

    def _to_activity(self, event: Dict[str, Any]) -> RawActivity:
        project_id = event.get("project_id")
        name, url = self._project_details(project_id) if project_id else (None, None)
        return RawActivity(
            native_event_id=str(event["id"]) if event.get("id") is not None else None,
            project_native_id=project_id,
            project_name=name,
            project_url=url,
            action=canonical_gitlab_action(event.get("action_name"), event.get("target_type")),
            occurred_at=parse_timestamp(event.get("created_at")),
        )

    def _project_details(self, project_id: int) -> Tuple[Optional[str], Optional[str]]:
        """
        Name and url of a project, or ``(None, None)`` if GitLab refuses to
        describe it (deleted, private, access revoked). Events of such a
        project are then skipped as malformed instead of failing the fetch.
        """
        if project_id not in self._projects:
            url = f"{self.api_url}/projects/{project_id}"
            logger.info(f"Getting project info from GitLab... ({url})")
            try:
                project = self._json(self._get(url))
            except PlatformAPIError as e:
                logger.warning(f"Could not look up GitLab project {project_id}: {e}")
                project = {}
            if not isinstance(project, dict):
                logger.warning(f"Unexpected project payload for GitLab project {project_id}")
                project = {}
            self._projects[project_id] = (
                project.get("name_with_namespace"),
                project.get("web_url"),
            )
        return self._projects[project_id]

    def acknowledge(self):
        # Look project names up again next cycle so renames are picked up
        self._projects.clear()
