from __future__ import annotations

from typing import Any, Optional


class LiveStateError(Exception):
    """Base class for backend failures surfaced by the live-state engine."""

    code = "live_state_error"
    retriable = True


class DurableStoreUnavailable(LiveStateError):
    """The annotation database could not be read (error or timeout)."""

    code = "durable_store_unavailable"


class CacheStoreUnavailable(LiveStateError):
    """The snapshot cache could not be read or written (error or timeout).

    When raised from a build, ``result`` holds the computed signal so a
    caller may still use it in degraded mode. Nothing was cached.
    """

    code = "cache_store_unavailable"

    def __init__(self, message: str, *, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result
