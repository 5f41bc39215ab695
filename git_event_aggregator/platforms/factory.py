"""
Platform client factory.

Creates one client per platform whose credentials are configured.
"""
import logging
from typing import Dict

from git_event_aggregator import config
from git_event_aggregator.platforms.base import PlatformClient
from git_event_aggregator.platforms.github import GitHubClient
from git_event_aggregator.platforms.gitlab import GitLabClient

logger = logging.getLogger(__name__)


def build_clients() -> Dict[str, PlatformClient]:
    """Return the configured platform clients, keyed by platform name."""
    clients: Dict[str, PlatformClient] = {}

    if config.GITHUB_USERNAME:
        clients[GitHubClient.PLATFORM_NAME] = GitHubClient(
            username=config.GITHUB_USERNAME,
            token=config.GITHUB_API_TOKEN,
        )
    else:
        logger.info("GITHUB_USERNAME not set, GitHub sync disabled")

    if config.GITLAB_USER_ID:
        clients[GitLabClient.PLATFORM_NAME] = GitLabClient(
            user_id=config.GITLAB_USER_ID,
            token=config.GITLAB_API_TOKEN,
        )
    else:
        logger.info("GITLAB_USER_ID not set, GitLab sync disabled")

    return clients
