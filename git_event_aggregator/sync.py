"""
Sync Engine Module

This module orchestrates the incremental synchronization of every
platform: fetch activity newer than the checkpoint, normalize it, append
it to the event store and move the checkpoint, all in one transaction.
"""
import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Mapping, Optional, Union

from git_event_aggregator import config
from git_event_aggregator.catalog import ProjectCatalog
from git_event_aggregator.database import session_scope
from git_event_aggregator.errors import (
    CycleInProgressError,
    GitEventAggregatorError,
    MalformedItemError,
    StoreUnavailableError,
    TransientFetchError,
    UnknownPlatformError,
)
from git_event_aggregator.event_store import EventStore
from git_event_aggregator.models import to_utc_naive, utcnow
from git_event_aggregator.platforms.base import PlatformClient, RawActivity
from git_event_aggregator.registry import PlatformRegistry
from git_event_aggregator.taxonomy import ActionTaxonomy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = config.SYNC_MAX_RETRIES
    base_delay_s: float = config.SYNC_RETRY_BASE_DELAY_SECONDS
    max_delay_s: float = config.SYNC_RETRY_MAX_DELAY_SECONDS
    jitter: float = 0.25

    def compute_backoff_s(self, attempt: int) -> float:
        """
        attempt: 1..N
        """
        delay = min(self.base_delay_s * (2 ** max(0, attempt - 1)), self.max_delay_s)
        if self.jitter > 0:
            delay = delay * (1.0 + (random.random() * 2 - 1) * self.jitter)  # +- jitter
        return max(0.0, delay)


@dataclass
class SyncResult:
    platform: str
    fetched: int = 0
    inserted: int = 0
    duplicates: int = 0
    malformed: int = 0
    checkpoint: Optional[datetime] = None
    not_modified: bool = False


class SyncEngine:
    """
    Runs sync cycles, one platform at a time per cycle.

    Cycles of different platforms may run concurrently; two cycles of the
    same platform never do.
    """

    def __init__(
        self,
        engine,
        clients: Mapping[str, PlatformClient],
        retry_policy: RetryPolicy = None,
        sleep=time.sleep,
    ):
        self.engine = engine
        self.clients = dict(clients)
        self.retry_policy = retry_policy or RetryPolicy()
        self.registry = PlatformRegistry(engine)
        self.catalog = ProjectCatalog(engine)
        self.taxonomy = ActionTaxonomy(engine)
        self.events = EventStore(engine)
        self._locks = {name: threading.Lock() for name in self.clients}
        self._sleep = sleep

    @property
    def platforms(self):
        return sorted(self.clients)

    def run_cycle(self, platform: str) -> SyncResult:
        """
        Run one sync cycle for ``platform``.

        Raises:
            CycleInProgressError: another cycle of the platform is running
            TransientFetchError, PlatformAPIError: fetching failed
            ConstraintViolationError, StoreUnavailableError: the commit failed
            CheckpointRegressionError: the checkpoint would move backwards
        """
        if platform not in self.clients:
            raise UnknownPlatformError(f"No client configured for platform '{platform}'")
        lock = self._locks[platform]
        if not lock.acquire(blocking=False):
            raise CycleInProgressError(f"A sync cycle for '{platform}' is already running")
        try:
            return self._run_cycle(platform, self.clients[platform])
        finally:
            lock.release()

    def run_cycle_with_retry(self, platform: str) -> SyncResult:
        """Run a cycle, retrying transient fetch and storage failures with backoff."""
        attempt = 0
        while True:
            try:
                return self.run_cycle(platform)
            except (TransientFetchError, StoreUnavailableError) as e:
                attempt += 1
                if attempt > self.retry_policy.max_retries:
                    logger.error(f"Sync of '{platform}' failed after {attempt} attempts: {e}")
                    raise
                delay = self.retry_policy.compute_backoff_s(attempt)
                logger.warning(
                    f"Sync of '{platform}' failed ({e}), "
                    f"retry {attempt}/{self.retry_policy.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)

    def sync_all(self) -> Dict[str, Union[SyncResult, Exception]]:
        """Sync every platform concurrently, one worker per platform."""
        results = {}
        if not self.clients:
            logger.warning("No platform clients configured, nothing to sync")
            return results
        with ThreadPoolExecutor(max_workers=len(self.clients)) as pool:
            futures = {
                platform: pool.submit(self.run_cycle_with_retry, platform)
                for platform in self.platforms
            }
            for platform, future in futures.items():
                try:
                    results[platform] = future.result()
                except GitEventAggregatorError as e:
                    logger.error(f"Sync of '{platform}' failed: {e}")
                    results[platform] = e
                except Exception as e:
                    logger.exception(f"Unexpected error syncing '{platform}': {e}")
                    results[platform] = e
        return results

    def close(self):
        for client in self.clients.values():
            client.close()

    def _run_cycle(self, platform: str, client: PlatformClient) -> SyncResult:
        start_time = utcnow()
        logger.info(f"Starting sync cycle for '{platform}' at {start_time}")

        self.registry.register_platform(platform)
        last_sync = self.registry.get_last_sync(platform)

        # Nothing is written before the fetch is complete
        fetched = client.fetch_since(last_sync)
        result = SyncResult(
            platform=platform,
            fetched=len(fetched.items),
            checkpoint=last_sync,
            not_modified=fetched.not_modified,
        )

        items = []
        for item in fetched.items:
            try:
                items.append(self._validate(item))
            except MalformedItemError as e:
                result.malformed += 1
                logger.warning(f"Skipping malformed {platform} item {item.native_event_id}: {e}")
        items.sort(key=lambda item: item.occurred_at)

        if not items and fetched.not_modified:
            logger.info(f"No changes on '{platform}', checkpoint stays at {last_sync}")
            client.acknowledge()
            return result

        # An empty window still moves the checkpoint, to the start of the fetch.
        # Re-delivered older items are deduplicated but never pull it back.
        if items:
            new_checkpoint = items[-1].occurred_at
            if last_sync is not None and new_checkpoint < last_sync:
                new_checkpoint = last_sync
        else:
            new_checkpoint = start_time

        observed = {}
        with session_scope(self.engine) as session:
            seen = set()
            buffered = []
            for item in items:
                project_id = self.catalog.resolve_or_create_project(
                    platform,
                    item.project_native_id,
                    item.project_name,
                    item.project_url,
                    session=session,
                )
                action_id = self.taxonomy.resolve_or_create_action(item.action, session=session)
                observed[project_id] = (item.project_name, item.project_url)

                key = self._dedup_key(platform, item)
                if key in seen or self.events.has_git_event(
                    item.occurred_at, project_id, action_id, session=session
                ):
                    result.duplicates += 1
                    logger.debug(f"Skipping already ingested {platform} item {key}")
                    continue
                seen.add(key)
                buffered.append((item.occurred_at, project_id, action_id))

            for timestamp, project_id, action_id in buffered:
                self.events.append_git_event(timestamp, project_id, action_id, session=session)
            self.registry.advance_checkpoint(platform, new_checkpoint, session=session)

        result.inserted = len(buffered)
        result.checkpoint = new_checkpoint
        client.acknowledge()

        for project_id, (name, url) in observed.items():
            self.catalog.refresh_project_metadata(project_id, name, url)

        duration = (utcnow() - start_time).total_seconds()
        logger.info(
            f"Sync cycle for '{platform}' completed in {duration:.2f} seconds: "
            f"{result.inserted} inserted, {result.duplicates} duplicates, "
            f"{result.malformed} malformed, checkpoint {new_checkpoint}"
        )
        return result

    @staticmethod
    def _validate(item: RawActivity) -> RawActivity:
        missing = [
            name
            for name in ("project_native_id", "project_name", "project_url", "occurred_at")
            if getattr(item, name) in (None, "")
        ]
        if not item.action or not item.action.strip():
            missing.append("action")
        if missing:
            raise MalformedItemError(f"missing {', '.join(missing)}")
        try:
            project_native_id = int(item.project_native_id)
        except (TypeError, ValueError):
            raise MalformedItemError(f"invalid project id {item.project_native_id!r}") from None
        return replace(
            item,
            project_native_id=project_native_id,
            action=item.action.strip(),
            occurred_at=to_utc_naive(item.occurred_at),
        )

    @staticmethod
    def _dedup_key(platform: str, item: RawActivity):
        if item.native_event_id:
            return (platform, item.project_native_id, item.native_event_id)
        return (platform, item.project_native_id, item.occurred_at, item.action)
