"""
Event Store Module

Append-only log of events. A git event is stored as a base ``Event`` row
plus a ``GitEvent`` extension row carrying the same id.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select

from git_event_aggregator.database import session_scope
from git_event_aggregator.models import Event, GitAction, GitEvent, GitProject, to_utc_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitEventRecord:
    id: int
    timestamp: datetime
    platform: str
    project_id: int
    project_name: str
    action: str


class EventStore:
    def __init__(self, engine):
        self.engine = engine

    def append_git_event(self, timestamp: datetime, project_id: int, action_id: int, session=None) -> int:
        """
        Append one git event and return its id.

        Both rows are written in the same transaction, so either both are
        committed or neither is.
        """
        with session_scope(self.engine, session) as s:
            event = Event(timestamp=to_utc_naive(timestamp))
            s.add(event)
            s.flush()
            s.add(GitEvent(id=event.id, project_fk=project_id, action_fk=action_id))
            s.flush()
            event_id = event.id
        logger.debug(f"Appended git event {event_id} @ {timestamp}")
        return event_id

    def has_git_event(self, timestamp: datetime, project_id: int, action_id: int, session=None) -> bool:
        """Whether an event with the same time, project and action is stored."""
        with session_scope(self.engine, session) as s:
            count = s.execute(
                select(func.count())
                .select_from(GitEvent)
                .join(Event, Event.id == GitEvent.id)
                .where(
                    Event.timestamp == to_utc_naive(timestamp),
                    GitEvent.project_fk == project_id,
                    GitEvent.action_fk == action_id,
                )
            ).scalar_one()
        if count > 1:
            logger.error(
                f"There are {count} events with action {action_id} on project "
                f"{project_id} at {timestamp}; the store already holds duplicates"
            )
        return count > 0

    def list_git_events(
        self,
        platform: Optional[str] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
        session=None,
    ) -> List[GitEventRecord]:
        stmt = (
            select(
                Event.id,
                Event.timestamp,
                GitProject.platform,
                GitProject.id,
                GitProject.name,
                GitAction.name,
            )
            .join(GitEvent, GitEvent.id == Event.id)
            .join(GitProject, GitProject.id == GitEvent.project_fk)
            .join(GitAction, GitAction.id == GitEvent.action_fk)
            .order_by(Event.id.desc() if newest_first else Event.id)
        )
        if platform is not None:
            stmt = stmt.where(GitProject.platform == platform)
        if limit is not None:
            stmt = stmt.limit(limit)
        with session_scope(self.engine, session) as s:
            return [GitEventRecord(*row) for row in s.execute(stmt)]

    def count_events(self, session=None) -> int:
        with session_scope(self.engine, session) as s:
            return s.execute(select(func.count()).select_from(Event)).scalar_one()
