"""
Sync Scheduler Module

Runs the sync cycles of every platform in the background, one thread
per platform.
"""
import logging
import threading
from typing import List

from git_event_aggregator import config
from git_event_aggregator.errors import CheckpointRegressionError, GitEventAggregatorError
from git_event_aggregator.sync import SyncEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, sync_engine: SyncEngine, interval_seconds: float = None):
        self.sync_engine = sync_engine
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else config.SYNC_INTERVAL_SECONDS
        )
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def start(self):
        """Start one worker thread per configured platform."""
        self._stop.clear()
        for platform in self.sync_engine.platforms:
            thread = threading.Thread(
                target=self._loop,
                args=(platform,),
                name=f"sync-{platform}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
            logger.info(f"Started sync loop for '{platform}' every {self.interval_seconds}s")

    def stop(self, timeout: float = None):
        """
        Signal the workers to stop and wait for them.

        A cycle that is committing finishes its transaction first.
        """
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Sync scheduler stopped")

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _loop(self, platform: str):
        while not self._stop.is_set():
            self.run_once(platform)
            self._stop.wait(self.interval_seconds)

    def run_once(self, platform: str):
        """Run one cycle with retries; failures are logged, not raised."""
        try:
            return self.sync_engine.run_cycle_with_retry(platform)
        except CheckpointRegressionError as e:
            logger.critical(f"Checkpoint regression on '{platform}': {e}")
        except GitEventAggregatorError as e:
            logger.error(f"Sync cycle for '{platform}' failed: {e}")
        except Exception as e:
            # Keep the worker alive, the next cycle starts from the same checkpoint
            logger.exception(f"Unexpected error in sync loop for '{platform}': {e}")
        return None
