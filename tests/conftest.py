"""
Shared pytest fixtures for the Git Event Aggregator test suite.

Every test gets its own SQLite database file, with foreign keys enforced
just like in production.
"""

from datetime import datetime
from typing import Optional

import pytest
from sqlalchemy import func, select

from git_event_aggregator.database import get_engine, get_sync_session, init_db
from git_event_aggregator.platforms.base import FetchResult, PlatformClient, RawActivity
from git_event_aggregator.sync import RetryPolicy, SyncEngine

T1 = datetime(2024, 5, 3, 10, 0, 0)
T2 = datetime(2024, 5, 3, 11, 30, 0)
T3 = datetime(2024, 5, 4, 8, 15, 0)


class FakeClient(PlatformClient):
    """
    Platform client serving canned fetch results, one per call.

    Exceptions in ``batches`` are raised instead of returned. Unlike the
    real clients it does not drop items older than the checkpoint, which
    lets tests re-deliver already ingested activity.
    """

    def __init__(self, name="github", batches=None):
        self.PLATFORM_NAME = name
        super().__init__("https://example.invalid", token="test-token")
        self.batches = list(batches or [])
        self.calls = []
        self.acknowledged = 0

    def fetch_since(self, since):
        self.calls.append(since)
        if not self.batches:
            return FetchResult()
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    def _fetch(self, since):
        raise NotImplementedError

    def acknowledge(self):
        self.acknowledged += 1


def activity(
    native_event_id: Optional[str] = "1",
    project: Optional[int] = 42,
    action: Optional[str] = "push",
    at: Optional[datetime] = T1,
    name: Optional[str] = "octo/pollux",
    url: Optional[str] = "https://github.com/octo/pollux",
) -> RawActivity:
    return RawActivity(
        native_event_id=native_event_id,
        project_native_id=project,
        project_name=name,
        project_url=url,
        action=action,
        occurred_at=at,
    )


def count_rows(engine, model) -> int:
    with get_sync_session(engine) as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def engine(tmp_path):
    """A fresh, initialized database."""
    engine = get_engine(f"sqlite:///{tmp_path / 'events.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def no_retry():
    return RetryPolicy(max_retries=0, base_delay_s=0, jitter=0)


@pytest.fixture
def make_sync_engine(engine, no_retry):
    """
    Return a function building a SyncEngine over fake clients.

    Example:
        sync_engine = make_sync_engine(FakeClient("github", [FetchResult(...)]))
    """

    def _make(*clients, retry_policy=None):
        return SyncEngine(
            engine,
            {client.PLATFORM_NAME: client for client in clients},
            retry_policy=retry_policy or no_retry,
            sleep=lambda seconds: None,
        )

    return _make
