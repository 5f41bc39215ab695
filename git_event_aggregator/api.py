"""
API Module

Read-only queries over the unified event log.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from git_event_aggregator import config
from git_event_aggregator.database import get_engine
from git_event_aggregator.event_store import EventStore
from git_event_aggregator.models import Event, GitAction, GitEvent, GitProject
from git_event_aggregator.registry import PlatformRegistry

logger = logging.getLogger(__name__)
router = APIRouter()


def get_session():
    with Session(get_engine(config.DATABASE_URL)) as session:
        yield session


def _window_start(offset_minutes: int) -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=offset_minutes)


@router.get("/platforms")
def get_platforms(session: Session = Depends(get_session)):
    """
    List the registered platforms with their sync checkpoint.
    """
    try:
        registry = PlatformRegistry(session.get_bind())
        return [
            {"name": state.name, "last_sync": state.last_sync}
            for state in registry.list_platforms(session=session)
        ]
    except SQLAlchemyError as e:
        logger.error(f"Error listing platforms: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/events")
def get_events(
    platform: Optional[str] = Query(None, description="Only events of this platform"),
    limit: int = Query(50, ge=1, le=1000, description="Number of events to return"),
    session: Session = Depends(get_session),
):
    """
    Get the most recent git events, newest first.
    """
    try:
        store = EventStore(session.get_bind())
        records = store.list_git_events(
            platform=platform, limit=limit, newest_first=True, session=session
        )
        return [
            {
                "id": record.id,
                "timestamp": record.timestamp,
                "platform": record.platform,
                "project": record.project_name,
                "action": record.action,
            }
            for record in records
        ]
    except SQLAlchemyError as e:
        logger.error(f"Error listing events: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/events/count", response_model=Dict[str, int])
def get_event_count_by_action(
    offset: int = Query(10, ge=1, description="Time offset in minutes"),
    session: Session = Depends(get_session),
):
    """
    Get the count of events grouped by action in the last `offset` minutes.
    """
    try:
        rows = (
            session.query(GitAction.name, func.count().label("cnt"))
            .join(GitEvent, GitEvent.action_fk == GitAction.id)
            .join(Event, Event.id == GitEvent.id)
            .filter(Event.timestamp >= _window_start(offset))
            .group_by(GitAction.name)
            .all()
        )
        return {name: cnt for name, cnt in rows}
    except SQLAlchemyError as e:
        logger.error(f"Error getting event counts: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/projects/active")
def get_active_projects(
    limit: int = Query(10, ge=1, description="Number of projects to return"),
    offset: int = Query(60, ge=1, description="Time offset in minutes"),
    session: Session = Depends(get_session),
):
    """
    Get the most active projects (by event count) over the given time window.
    """
    try:
        rows = (
            session.query(
                GitProject.platform,
                GitProject.name,
                GitProject.url,
                func.count().label("cnt"),
            )
            .join(GitEvent, GitEvent.project_fk == GitProject.id)
            .join(Event, Event.id == GitEvent.id)
            .filter(Event.timestamp >= _window_start(offset))
            .group_by(GitProject.id, GitProject.platform, GitProject.name, GitProject.url)
            .order_by(desc("cnt"))
            .limit(limit)
            .all()
        )
        return [
            {"platform": platform, "project": name, "url": url, "event_count": cnt}
            for platform, name, url, cnt in rows
        ]
    except SQLAlchemyError as e:
        logger.error(f"Error getting active projects: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")
