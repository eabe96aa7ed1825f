"""Structured concurrency helpers for Gorgon.

Each build phase fans work out over a thread pool and fans back in before the
next phase starts. This module provides the three pieces that make that safe:

- Deadline: a build-wide expiry plus a cancellation flag shared by workers.
- TaskGroup: run N jobs, cancel the rest on the first failure, join all, and
  re-raise that first failure.
- SingleFlight: collapse concurrent calls for the same key into one.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, TypeVar

from .errors import BuildCancelled

T = TypeVar("T")


def default_parallelism() -> int:
    """Return the default worker count (the host CPU count)."""
    return os.cpu_count() or 1


class Deadline:
    """A monotonic deadline with cooperative cancellation.

    A deadline created with ``timeout=None`` never expires but can still be
    cancelled. Children share the parent's expiry and observe its
    cancellation, while cancelling a child leaves the parent untouched.
    """

    def __init__(self, timeout: float | None = None):
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._event = threading.Event()
        self._parent: Deadline | None = None

    def child(self) -> Deadline:
        """Return a deadline with the same expiry, cancellable on its own."""
        child = Deadline()
        child._expires_at = self._expires_at
        child._parent = self
        return child

    def remaining(self) -> float | None:
        """Return seconds left before expiry, or None when there is no expiry."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def cancel(self) -> None:
        self._event.set()

    def check(self) -> None:
        """Raise BuildCancelled if the deadline is cancelled or expired."""
        if self.cancelled:
            raise BuildCancelled("cancelled after a sibling task failed")
        if self.expired:
            raise BuildCancelled("deadline exceeded")


class TaskGroup:
    """Run jobs in parallel with first-error-wins semantics.

    Jobs are callables taking the group's Deadline. When any job raises, the
    group's deadline is cancelled, queued jobs are dropped, running jobs are
    joined, and the first exception is re-raised. Side effects of jobs that
    already finished are kept.

    Attributes:
        deadline: Child deadline handed to every job of this group.
        max_workers: Upper bound on concurrently running jobs.
    """

    def __init__(self, deadline: Deadline | None = None, max_workers: int | None = None):
        self.deadline = (deadline or Deadline()).child()
        self.max_workers = max_workers or default_parallelism()

    def run(self, jobs: Iterable[Callable[[Deadline], T]]) -> list[T]:
        """Run all jobs and return their results in submission order.

        Args:
            jobs: Callables accepting a Deadline.

        Returns:
            Results in the same order as ``jobs``.

        Raises:
            Exception: The first exception raised by any job.
        """
        jobs = list(jobs)
        if not jobs:
            return []

        results: list[Any] = [None] * len(jobs)
        first_error: BaseException | None = None
        workers = min(self.max_workers, len(jobs))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._call, job): i for i, job in enumerate(jobs)}
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                exc = future.exception()
                if exc is None:
                    results[futures[future]] = future.result()
                    continue
                if first_error is None:
                    first_error = exc
                    self.deadline.cancel()
                    for pending in futures:
                        pending.cancel()

        if first_error is not None:
            raise first_error
        return results

    def _call(self, job: Callable[[Deadline], T]) -> T:
        self.deadline.check()
        return job(self.deadline)


class _Call:
    def __init__(self):
        self.done = threading.Event()
        self.value: Any = None
        self.error: BaseException | None = None


class SingleFlight:
    """De-duplicate concurrent calls sharing a key.

    The first caller for a key runs the function; callers arriving while it
    runs block and receive the same value or the same exception. Once the
    call settles the key is forgotten, so a later call runs again.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: dict[str, _Call] = {}

    def do(self, key: str, fn: Callable[[], T]) -> T:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.value

        try:
            call.value = fn()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                del self._calls[key]
            call.done.set()
        return call.value

    def in_flight(self) -> int:
        """Return the number of keys currently being resolved."""
        with self._lock:
            return len(self._calls)
