"""
Errors Module

Exception taxonomy shared by the storage layer, the platform clients
and the sync engine.
"""


class GitEventAggregatorError(Exception):
    """Base class for all errors raised by this package."""


class TransientFetchError(GitEventAggregatorError):
    """Network failure, timeout or rate limit while talking to a platform API."""


class PlatformAPIError(GitEventAggregatorError):
    """A platform API answered with something we cannot use."""


class MalformedItemError(GitEventAggregatorError):
    """A raw activity item is missing required fields."""


class ConstraintViolationError(GitEventAggregatorError):
    """A uniqueness or foreign-key constraint failed during commit."""


class CheckpointRegressionError(GitEventAggregatorError):
    """An attempt was made to move a platform checkpoint backwards."""

    def __init__(self, platform, current, requested):
        self.platform = platform
        self.current = current
        self.requested = requested
        super().__init__(
            f"Refusing to move checkpoint of '{platform}' back from "
            f"{current.isoformat()} to {requested.isoformat()}"
        )


class StoreUnavailableError(GitEventAggregatorError):
    """The database could not be reached."""


class UnknownPlatformError(GitEventAggregatorError):
    """The platform is not registered."""


class CycleInProgressError(GitEventAggregatorError):
    """A sync cycle for the platform is already running."""
