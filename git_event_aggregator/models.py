"""
Database Models

This module defines the database models for the application.

``Event`` is the base record shared by every event family. ``GitEvent`` is
the extension record of the git family: it shares the id of its ``Event``
(primary key and foreign key at the same time). A new event family gets its
own sibling extension table keyed the same way.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def to_utc_naive(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC, the form stored in the database."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GitPlatform(Base):
    """A hosting platform and its sync checkpoint."""

    __tablename__ = "GitPlatforms"

    name = Column(String(100), primary_key=True)
    # NULL means the platform was never synchronized
    last_sync = Column("lastSync", DateTime, nullable=True)

    def __repr__(self):
        return f"<GitPlatform(name={self.name}, last_sync={self.last_sync})>"


class GitAction(Base):
    """Canonical action name, shared by all platforms."""

    __tablename__ = "GitActions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)

    def __repr__(self):
        return f"<GitAction(id={self.id}, name={self.name})>"


class GitProject(Base):
    """A repository/project, unique per (platform, platform_project_id)."""

    __tablename__ = "GitProjects"
    __table_args__ = (
        UniqueConstraint(
            "platform", "platform_project_id", name="GitProjects_UNIQUE"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    url = Column(String(500), nullable=False)
    platform = Column(
        String(100),
        ForeignKey("GitPlatforms.name", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    platform_project_id = Column(BigInteger, nullable=False)

    def __repr__(self):
        return (
            f"<GitProject(id={self.id}, platform={self.platform}, "
            f"platform_project_id={self.platform_project_id})>"
        )


class Event(Base):
    """Base record of every ingested activity."""

    __tablename__ = "Events"
    # Keeps ids monotonic on SQLite, even after the newest rows were deleted
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<Event(id={self.id}, timestamp={self.timestamp})>"


class GitEvent(Base):
    """Git family extension of ``Event``."""

    __tablename__ = "GitEvents"

    id = Column(
        Integer,
        ForeignKey("Events.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
        autoincrement=False,
    )
    project_fk = Column(
        Integer,
        ForeignKey("GitProjects.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    action_fk = Column(
        Integer,
        ForeignKey("GitActions.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )

    def __repr__(self):
        return (
            f"<GitEvent(id={self.id}, project_fk={self.project_fk}, "
            f"action_fk={self.action_fk})>"
        )
