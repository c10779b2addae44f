"""Cancellation tokens for queries."""

from __future__ import annotations

import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from threading import Event
from typing import Optional, TypeVar

from factgraph.errors import QueryCancelled, QueryTimeout


T = TypeVar("T")

_POLL_INTERVAL = 0.05


class CancellationToken:
    """
    Carries a deadline and a cancel flag through one query.

    The caller may keep a reference and call ``cancel()`` from another
    thread; the planner checks the token between stages and while waiting
    on sub-lookups.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    @classmethod
    def with_timeout(cls, timeout: Optional[float]) -> CancellationToken:
        return cls(timeout)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None if there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """
        Raise if the query should stop.

        Raises:
            QueryCancelled: If ``cancel()`` was called
            QueryTimeout: If the deadline has passed
        """
        if self._event.is_set():
            raise QueryCancelled("query cancelled by caller")
        if self.expired:
            raise QueryTimeout("query exceeded its deadline")

    def wait_for(self, future: Future[T]) -> T:
        """
        Wait for a future while honouring cancellation and the deadline.

        The future is cancelled (best effort) when the query is abandoned.
        """
        while True:
            try:
                self.check()
            except (QueryCancelled, QueryTimeout):
                future.cancel()
                raise
            interval = _POLL_INTERVAL
            remaining = self.remaining()
            if remaining is not None:
                interval = min(interval, remaining)
            try:
                return future.result(timeout=interval)
            except FutureTimeout:
                continue
