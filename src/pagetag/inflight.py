"""In-flight request registry (stampede protection)."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class InFlightRegistry:
    """Deduplicates concurrent fetches issued for the same request key.

    Lookup and registration happen with no await in between, so on a single
    event loop no lock is needed.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Task[Any]] = {}

    def start(
        self,
        key: str,
        issue_fetch: Callable[[], Awaitable[T]],
        *,
        replace: bool = False,
    ) -> asyncio.Task[T]:
        """Join the outstanding fetch for ``key`` or issue a new one.

        ``issue_fetch`` is called synchronously, only when a new fetch is
        needed. With ``replace=True`` a new fetch is always issued and
        supersedes the registered one; the old one still runs to completion.
        """
        existing = self._in_flight.get(key)
        if existing is not None and not replace and not existing.done():
            logger.debug("Joining in-flight fetch %s", key)
            return existing

        fetch = issue_fetch()
        task: asyncio.Task[T] = asyncio.ensure_future(self._run(key, fetch))
        self._in_flight[key] = task
        task.add_done_callback(lambda done: self._finish(key, done, fetch))
        logger.debug("Issued fetch %s", key)
        return task

    async def coalesce(self, key: str, issue_fetch: Callable[[], Awaitable[T]]) -> T:
        """Await the shared fetch for ``key``.

        Cancelling the caller does not cancel the shared fetch.
        """
        task = self.start(key, issue_fetch)
        return await asyncio.shield(task)

    def get(self, key: str) -> asyncio.Task[Any] | None:
        return self._in_flight.get(key)

    def tasks(self) -> list[asyncio.Task[Any]]:
        return list(self._in_flight.values())

    def cancel_all(self) -> None:
        for task in list(self._in_flight.values()):
            task.cancel()
        self._in_flight.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)

    def discard_entry(self, entry_key: str) -> None:
        """Forget every request registered for ``entry_key`` without cancelling it."""
        prefix = f"{entry_key}#"
        stale = [k for k in self._in_flight if k == entry_key or k.startswith(prefix)]
        for key in stale:
            del self._in_flight[key]

    async def _run(self, key: str, fetch: Awaitable[T]) -> T:
        # released before waiters resume, so they never see a finished fetch
        try:
            return await fetch
        finally:
            current = asyncio.current_task()
            if current is not None:
                self._release(key, current)

    def _finish(
        self, key: str, task: asyncio.Task[Any], fetch: Awaitable[Any]
    ) -> None:
        # a task cancelled before its first step never ran the fetch
        self._release(key, task)
        if task.cancelled() and inspect.iscoroutine(fetch):
            fetch.close()

    def _release(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
