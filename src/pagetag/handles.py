"""Consumer handles: live query subscriptions and mutation triggers."""

from __future__ import annotations

import asyncio
from collections.abc import Generator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pagetag.endpoints import MutationEndpoint, QueryEndpoint
from pagetag.invalidation import InvalidationResult
from pagetag.keys import should_force_refetch
from pagetag.subscriptions import Listener
from pagetag.types import EntryStatus, Page, QueryState

if TYPE_CHECKING:
    from pagetag.engine import CacheEngine

T = TypeVar("T")


class QueryHandle(Generic[T]):
    """A live subscription to one query.

    Usage:
        query = engine.use_query("getHotels", {"city": "Lyon", "page": 1})
        state = await query            # QueryState once the fetch settles
        await query.fetch_next_page()  # page 2 appended into the same entry
        await query.set_args({"city": "Nice", "page": 1})  # new entry
        query.close()

    Also an async context manager that awaits the first load on enter and
    unsubscribes on exit.
    """

    def __init__(
        self,
        engine: CacheEngine,
        endpoint: QueryEndpoint,
        args: Any = None,
        *,
        consumer_id: str | None = None,
        listener: Listener | None = None,
    ) -> None:
        self._engine = engine
        self._endpoint = endpoint
        self._args = args
        self._listener = listener
        self._subscription, self._pending = engine._acquire(
            endpoint, args, consumer_id, listener
        )
        self._consumer_id = self._subscription.consumer_id
        self._last_state: QueryState[T] | None = None

    @property
    def endpoint(self) -> QueryEndpoint:
        return self._endpoint

    @property
    def key(self) -> str:
        return self._subscription.key

    @property
    def args(self) -> Any:
        return self._args

    @property
    def consumer_id(self) -> str:
        return self._consumer_id

    @property
    def closed(self) -> bool:
        return not self._subscription.active

    @property
    def state(self) -> QueryState[T]:
        """Current snapshot of the entry behind this handle."""
        state = self._engine._snapshot(self.key)
        if state is None:
            return self._last_state or QueryState(
                key=self.key, endpoint=self._endpoint.name, status=EntryStatus.IDLE
            )
        return state

    @property
    def status(self) -> EntryStatus:
        return self.state.status

    @property
    def data(self) -> T | None:
        return self.state.data

    @property
    def error(self) -> BaseException | None:
        return self.state.error

    @property
    def is_stale(self) -> bool:
        return self.state.is_stale

    @property
    def is_fetching(self) -> bool:
        return self.state.is_fetching

    @property
    def has_more(self) -> bool:
        return self.state.has_more

    def __await__(self) -> Generator[Any, None, QueryState[T]]:
        return self._settle().__await__()

    async def refetch(self) -> QueryState[T]:
        """Fetch the current args again, even if the entry is fresh."""
        self._ensure_open()
        self._pending = self._engine._ensure(self._endpoint, self._args, force=True)
        return await self._settle()

    async def set_args(self, args: Any) -> QueryState[T]:
        """Point the handle at new args.

        A changed filter moves the subscription to another entry; a changed
        page only fetches that page into the current one.
        """
        self._ensure_open()
        if should_force_refetch(self._args, args, self._endpoint.page_fields):
            subscription, pending = self._engine._acquire(
                self._endpoint, args, self._consumer_id, self._listener
            )
            self._engine._release(self._subscription)
            self._subscription = subscription
        else:
            pending = self._engine._ensure(self._endpoint, args)
        self._args = args
        self._pending = pending
        return await self._settle()

    async def fetch_next_page(self) -> QueryState[T]:
        """Advance ``page`` by one if the last response says there is more."""
        state = self.state
        page = state.data
        if not isinstance(page, Page) or page.pagination is None or not page.has_more:
            return state
        # scalar args have no page field to advance
        if self._args is not None and not isinstance(self._args, Mapping):
            return state
        args = dict(self._args or {})
        args["page"] = page.pagination.page + 1
        return await self.set_args(args)

    def close(self) -> None:
        """Unsubscribe. The entry lingers for its grace period."""
        if self.closed:
            return
        self._last_state = self.state
        self._engine._release(self._subscription)

    async def __aenter__(self) -> QueryHandle[T]:
        await self
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"QueryHandle({self.key}, {self.status.value})"

    async def _settle(self) -> QueryState[T]:
        pending = self._pending
        if pending is not None and not pending.done():
            await asyncio.shield(pending)
        return self.state

    def _ensure_open(self) -> None:
        if self.closed:
            raise RuntimeError(f"Query handle for {self.key} is closed")


@dataclass(slots=True)
class MutationState:
    """Status of the latest call made through a mutation trigger."""

    endpoint: str
    status: EntryStatus = EntryStatus.IDLE
    data: Any = None
    error: BaseException | None = None
    invalidated: InvalidationResult | None = None

    @property
    def is_loading(self) -> bool:
        return self.status is EntryStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is EntryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is EntryStatus.ERROR

    def reset(self) -> None:
        self.status = EntryStatus.IDLE
        self.data = None
        self.error = None
        self.invalidated = None


class MutationTrigger:
    """Callable that runs a mutation and its declared invalidations."""

    __slots__ = ("_endpoint", "_engine", "_state")

    def __init__(
        self, engine: CacheEngine, endpoint: MutationEndpoint, state: MutationState
    ) -> None:
        self._engine = engine
        self._endpoint = endpoint
        self._state = state

    @property
    def state(self) -> MutationState:
        return self._state

    async def __call__(self, payload: Any = None) -> Any:
        return await self._engine._run_mutation(self._endpoint, payload, self._state)
