"""
Project Catalog Module

Repositories/projects seen in platform activity, unique per
(platform, platform_project_id).
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_, select, update

from git_event_aggregator.database import insert_if_absent, session_scope
from git_event_aggregator.errors import GitEventAggregatorError
from git_event_aggregator.models import GitProject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectRecord:
    id: int
    platform: str
    platform_project_id: int
    name: str
    url: str


class ProjectCatalog:
    def __init__(self, engine):
        self.engine = engine

    def resolve_or_create_project(
        self, platform: str, platform_project_id: int, name: str, url: str, session=None
    ) -> int:
        """
        Return the id of the project, creating it on first sight.

        ``name`` and ``url`` are only used when the row is created; existing
        rows keep their values (see ``refresh_project_metadata``).
        """
        values = {
            "platform": platform,
            "platform_project_id": platform_project_id,
            "name": name,
            "url": url,
        }
        with session_scope(self.engine, session) as s:
            insert_if_absent(s, GitProject, values, ["platform", "platform_project_id"])
            project_id = s.execute(
                select(GitProject.id).where(
                    GitProject.platform == platform,
                    GitProject.platform_project_id == platform_project_id,
                )
            ).scalar_one()
        return project_id

    def get_project(self, platform: str, platform_project_id: int, session=None) -> Optional[ProjectRecord]:
        with session_scope(self.engine, session) as s:
            project = s.execute(
                select(GitProject).where(
                    GitProject.platform == platform,
                    GitProject.platform_project_id == platform_project_id,
                )
            ).scalar_one_or_none()
            if project is None:
                return None
            return ProjectRecord(
                project.id,
                project.platform,
                project.platform_project_id,
                project.name,
                project.url,
            )

    def refresh_project_metadata(self, project_id: int, name: str, url: str) -> bool:
        """
        Best-effort update of the display name and url of a project.

        Never raises on storage problems: ingestion must not depend on it.

        Returns:
            True if the stored values changed
        """
        try:
            with session_scope(self.engine) as s:
                result = s.execute(
                    update(GitProject)
                    .where(
                        GitProject.id == project_id,
                        or_(GitProject.name != name, GitProject.url != url),
                    )
                    .values(name=name, url=url)
                    .execution_options(synchronize_session=False)
                )
        except GitEventAggregatorError as e:
            logger.warning(f"Could not refresh metadata of project {project_id}: {e}")
            return False
        if result.rowcount:
            logger.info(f"Refreshed metadata of project {project_id}: {name} ({url})")
        return bool(result.rowcount)
