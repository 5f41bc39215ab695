"""
Platform Registry Module

Keeps track of the known hosting platforms and of how far each of them
has been synchronized (the ``lastSync`` checkpoint).
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select

from git_event_aggregator.database import insert_if_absent, session_scope
from git_event_aggregator.errors import CheckpointRegressionError, UnknownPlatformError
from git_event_aggregator.models import Event, GitEvent, GitPlatform, GitProject, to_utc_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformState:
    name: str
    last_sync: Optional[datetime]


class PlatformRegistry:
    """
    Registered platforms and their checkpoints.

    Every method takes an optional ``session``; without one the call runs
    in its own transaction and is durable when it returns.
    """

    def __init__(self, engine):
        self.engine = engine

    def list_platforms(self, session=None) -> List[PlatformState]:
        with session_scope(self.engine, session) as s:
            rows = s.execute(select(GitPlatform).order_by(GitPlatform.name)).scalars()
            return [PlatformState(row.name, row.last_sync) for row in rows]

    def register_platform(self, name: str, session=None) -> None:
        """Create the platform with an empty checkpoint; no-op if it exists."""
        with session_scope(self.engine, session) as s:
            insert_if_absent(s, GitPlatform, {"name": name}, ["name"])
        logger.debug(f"Platform '{name}' registered")

    def get_last_sync(self, name: str, session=None) -> Optional[datetime]:
        with session_scope(self.engine, session) as s:
            return self._get(s, name).last_sync

    def advance_checkpoint(self, name: str, new_last_sync: datetime, session=None) -> None:
        """
        Move the checkpoint of ``name`` forward to ``new_last_sync``.

        Raises:
            UnknownPlatformError: the platform is not registered
            CheckpointRegressionError: ``new_last_sync`` is earlier than the
                current checkpoint
        """
        new_last_sync = to_utc_naive(new_last_sync)
        with session_scope(self.engine, session) as s:
            platform = self._get(s, name, for_update=True)
            current = platform.last_sync
            if current is not None and new_last_sync < current:
                raise CheckpointRegressionError(name, current, new_last_sync)
            platform.last_sync = new_last_sync
            s.flush()
        logger.info(f"Checkpoint of '{name}' moved from {current} to {new_last_sync}")

    def remove_platform(self, name: str, session=None) -> int:
        """
        Delete a platform with its projects and all of their events.

        The foreign keys cascade from platform to projects to git events,
        but not up to the base events, so those are removed explicitly first.

        Returns:
            Number of base events removed
        """
        with session_scope(self.engine, session) as s:
            platform = self._get(s, name)
            event_ids = (
                select(GitEvent.id)
                .join(GitProject, GitProject.id == GitEvent.project_fk)
                .where(GitProject.platform == name)
            )
            result = s.execute(
                delete(Event)
                .where(Event.id.in_(event_ids))
                .execution_options(synchronize_session=False)
            )
            s.delete(platform)
            s.flush()
        logger.info(f"Platform '{name}' removed together with {result.rowcount} events")
        return result.rowcount

    def _get(self, session, name, for_update=False):
        stmt = select(GitPlatform).where(GitPlatform.name == name)
        if for_update:
            stmt = stmt.with_for_update()
        platform = session.execute(stmt).scalar_one_or_none()
        if platform is None:
            raise UnknownPlatformError(f"Platform '{name}' is not registered")
        return platform
