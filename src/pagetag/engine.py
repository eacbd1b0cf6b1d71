"""The cache engine - one instance per process, shared by every consumer.

Wires the key codec, entry store, tag index, in-flight registry,
subscription manager and invalidation bus together, and exposes the
consumer API:

- use_query(): live subscription with paging and refetch
- use_mutation(): trigger plus status, invalidating declared tags on success
- query(), mutate(): one-shot helpers
- invalidate(): tag-based invalidation across every cache family
- clear(), close(): lifecycle methods
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pagetag.duration import parse_duration
from pagetag.endpoints import Endpoint, MutationEndpoint, QueryEndpoint
from pagetag.errors import SequenceDiscarded, TransportError, UnknownEndpointError
from pagetag.handles import MutationState, MutationTrigger, QueryHandle
from pagetag.inflight import InFlightRegistry
from pagetag.invalidation import InvalidationBus, InvalidationResult
from pagetag.merge import to_page
from pagetag.store import EntryStore
from pagetag.subscriptions import Listener, Subscription, SubscriptionManager
from pagetag.tags import TagLike
from pagetag.transports.base import Transport
from pagetag.types import CacheEntry, Duration, EntryStatus, QueryState

logger = logging.getLogger(__name__)


class CacheEngine:
    """Paginated, tag-invalidated in-memory query cache."""

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        keep_unused_for: Duration = "60s",
    ) -> None:
        self._transport = transport
        self._keep_unused_for = parse_duration(keep_unused_for)
        self._queries: dict[str, QueryEndpoint] = {}
        self._mutations: dict[str, MutationEndpoint] = {}
        self._store = EntryStore(on_change=self._entry_changed)
        self._subscriptions = SubscriptionManager(
            on_evict=self._evict,
            on_count=self._store.set_subscriber_count,
            keep_unused_for=self._keep_unused_for,
        )
        self._in_flight = InFlightRegistry()
        self._bus = InvalidationBus(
            self._store, self._subscriptions, self._refetch_invalidated
        )
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    @property
    def in_flight(self) -> InFlightRegistry:
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, *endpoints: Endpoint) -> None:
        """Register query and mutation endpoints. Names must be unique."""
        for endpoint in endpoints:
            if not isinstance(endpoint, (QueryEndpoint, MutationEndpoint)):
                raise TypeError(f"Expected an endpoint, got {type(endpoint)}")
            name = endpoint.name
            if name in self._queries or name in self._mutations:
                raise ValueError(f"Endpoint {name!r} is already registered")
            if isinstance(endpoint, QueryEndpoint):
                if endpoint.fetch is None and self._transport is None:
                    raise ValueError(f"{name}: no fetch function and no transport")
                if endpoint.keep_unused_for is not None:
                    parse_duration(endpoint.keep_unused_for)
                self._queries[name] = endpoint
            else:
                if endpoint.mutate is None and self._transport is None:
                    raise ValueError(f"{name}: no mutate function and no transport")
                self._mutations[name] = endpoint

    def query_endpoint(self, endpoint: str | QueryEndpoint) -> QueryEndpoint:
        name = endpoint.name if isinstance(endpoint, QueryEndpoint) else endpoint
        try:
            return self._queries[name]
        except KeyError:
            raise UnknownEndpointError(name) from None

    def mutation_endpoint(self, endpoint: str | MutationEndpoint) -> MutationEndpoint:
        name = endpoint.name if isinstance(endpoint, MutationEndpoint) else endpoint
        try:
            return self._mutations[name]
        except KeyError:
            raise UnknownEndpointError(name) from None

    # -------------------------------------------------------------------------
    # Consumer API
    # -------------------------------------------------------------------------

    def use_query(
        self,
        endpoint: str | QueryEndpoint,
        args: Any = None,
        *,
        consumer_id: str | None = None,
        listener: Listener | None = None,
    ) -> QueryHandle[Any]:
        """Subscribe to a query, starting a fetch unless the entry is fresh.

        Must be called from a running event loop. ``listener`` receives a
        ``QueryState`` after every change of the entry while subscribed.
        """
        self._ensure_open()
        return QueryHandle(
            self,
            self.query_endpoint(endpoint),
            args,
            consumer_id=consumer_id,
            listener=listener,
        )

    async def query(
        self, endpoint: str | QueryEndpoint, args: Any = None
    ) -> QueryState[Any]:
        """Subscribe, wait for the data, unsubscribe."""
        handle = self.use_query(endpoint, args)
        try:
            return await handle
        finally:
            handle.close()

    def use_mutation(
        self, endpoint: str | MutationEndpoint
    ) -> tuple[MutationTrigger, MutationState]:
        """Return a trigger for the mutation and the state it updates."""
        self._ensure_open()
        definition = self.mutation_endpoint(endpoint)
        state = MutationState(endpoint=definition.name)
        return MutationTrigger(self, definition, state), state

    async def mutate(self, endpoint: str | MutationEndpoint, payload: Any = None) -> Any:
        """Run a mutation once and return its result."""
        trigger, _ = self.use_mutation(endpoint)
        return await trigger(payload)

    async def invalidate(self, tags: list[TagLike]) -> InvalidationResult:
        """Invalidate every cached entry matching ``tags``, whatever its endpoint."""
        return self._bus.invalidate(tags)

    def get_state(
        self, endpoint: str | QueryEndpoint, args: Any = None
    ) -> QueryState[Any] | None:
        """Snapshot of the cached entry for (endpoint, args), if any."""
        definition = self.query_endpoint(endpoint)
        return self._snapshot(definition.key(args))

    async def wait_idle(self) -> None:
        """Wait until no fetch and no background refetch is outstanding."""
        while True:
            pending = [task for task in self._background_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def clear(self) -> None:
        """Drop every entry, subscription and outstanding fetch."""
        self._in_flight.cancel_all()
        for task in list(self._background_tasks):
            task.cancel()
        self._background_tasks.clear()
        self._subscriptions.close()
        self._store.clear()

    async def close(self) -> None:
        """Clear the cache and close the transport."""
        if self._closed:
            return
        await self.clear()
        self._closed = True
        if self._transport is not None:
            await self._transport.close()

    async def __aenter__(self) -> CacheEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _acquire(
        self,
        endpoint: QueryEndpoint,
        args: Any,
        consumer_id: str | None,
        listener: Listener | None,
    ) -> tuple[Subscription, asyncio.Task[Any] | None]:
        key = endpoint.key(args)
        self._store.get_or_create(key, endpoint.name, args)
        keep_unused_for = (
            parse_duration(endpoint.keep_unused_for)
            if endpoint.keep_unused_for is not None
            else None
        )
        subscription = self._subscriptions.subscribe(
            key, consumer_id, listener, keep_unused_for=keep_unused_for
        )
        return subscription, self._ensure(endpoint, args)

    def _release(self, subscription: Subscription) -> None:
        self._subscriptions.unsubscribe(subscription)

    def _ensure(
        self, endpoint: QueryEndpoint, args: Any, *, force: bool = False
    ) -> asyncio.Task[Any] | None:
        """Start (or join) a fetch unless the entry already holds these args."""
        key = endpoint.key(args)
        entry = self._store.get_or_create(key, endpoint.name, args)
        if not force and self._is_fresh(entry, endpoint, args):
            return None
        return self._start_fetch(endpoint, key, args)

    def _is_fresh(self, entry: CacheEntry, endpoint: QueryEndpoint, args: Any) -> bool:
        if entry.is_stale or entry.status is not EntryStatus.SUCCESS:
            return False
        return entry.last_args_signature == endpoint.signature(args)

    def _start_fetch(
        self, endpoint: QueryEndpoint, key: str, args: Any, *, replace: bool = False
    ) -> asyncio.Task[Any]:
        def issue() -> Any:
            sequence = self._store.begin_fetch(key, args)
            logger.debug("Fetching %s (#%d)", key, sequence)
            return self._fetch_and_commit(endpoint, key, args, sequence)

        task = self._in_flight.start(endpoint.request_key(args), issue, replace=replace)
        # superseded fetches leave the registry but keep running
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _fetch_and_commit(
        self, endpoint: QueryEndpoint, key: str, args: Any, sequence: int
    ) -> QueryState[Any] | None:
        try:
            raw = await self._call_fetch(endpoint, args)
            self._store.commit_success(
                key,
                sequence,
                raw,
                endpoint.instruction(args),
                lambda data: endpoint.tags_for(data, args),
                signature=endpoint.signature(args),
            )
        except TransportError as e:
            logger.debug("Fetch %s (#%d) failed: %s", key, sequence, e)
            try:
                self._store.commit_error(key, sequence, e)
            except SequenceDiscarded as discarded:
                logger.debug("%s", discarded)
        except SequenceDiscarded as discarded:
            logger.debug("%s", discarded)
        return self._snapshot(key)

    async def _call_fetch(self, endpoint: QueryEndpoint, args: Any) -> Any:
        try:
            if endpoint.fetch is not None:
                raw = await endpoint.fetch(args)
            elif self._transport is not None:
                raw = await self._transport.fetch(endpoint.name, args)
            else:
                raise TransportError(f"{endpoint.name}: no fetch function and no transport")
            if endpoint.transform_response is not None:
                raw = endpoint.transform_response(raw)
            if endpoint.items_field is not None:
                raw = to_page(raw, endpoint.items_field)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"{endpoint.name} failed: {e}") from e
        return raw

    async def _call_mutate(self, endpoint: MutationEndpoint, payload: Any) -> Any:
        try:
            if endpoint.mutate is not None:
                result = await endpoint.mutate(payload)
            elif self._transport is not None:
                result = await self._transport.mutate(endpoint.name, payload)
            else:
                raise TransportError(f"{endpoint.name}: no mutate function and no transport")
            if endpoint.transform_response is not None:
                result = endpoint.transform_response(result)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"{endpoint.name} failed: {e}") from e
        return result

    async def _run_mutation(
        self, endpoint: MutationEndpoint, payload: Any, state: MutationState
    ) -> Any:
        self._ensure_open()
        state.status = EntryStatus.LOADING
        state.error = None
        try:
            result = await self._call_mutate(endpoint, payload)
        except TransportError as e:
            state.status = EntryStatus.ERROR
            state.error = e
            raise

        # invalidation completes before the caller sees the result
        state.invalidated = await self.invalidate(
            list(endpoint.tags_for(result, payload))
        )
        state.data = result
        state.status = EntryStatus.SUCCESS
        return result

    def _refetch_invalidated(self, entry: CacheEntry) -> None:
        endpoint = self._queries.get(entry.endpoint)
        if endpoint is None:
            return
        args = entry.args
        if endpoint.refetch_from_first_page:
            args = endpoint.first_page_args(args)
        self._start_fetch(endpoint, entry.key, args, replace=True)

    def _snapshot(self, key: str) -> QueryState[Any] | None:
        entry = self._store.get(key)
        return QueryState.of(entry) if entry is not None else None

    def _entry_changed(self, entry: CacheEntry) -> None:
        if self._subscriptions.count(entry.key):
            self._subscriptions.notify(entry.key, QueryState.of(entry))

    def _evict(self, key: str) -> None:
        self._store.remove(key)
        # a returning subscriber issues its own fetch for the recreated entry
        self._in_flight.discard_entry(key)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("CacheEngine is closed")


def create_engine(
    *,
    transport: Transport | None = None,
    keep_unused_for: Duration = "60s",
) -> CacheEngine:
    """Create the cache engine.

    Args:
        transport: Default fetch/mutate collaborator for endpoints that do not
            carry their own functions
        keep_unused_for: Grace period before an unsubscribed entry is evicted

    Returns:
        CacheEngine with use_query, use_mutation, invalidate, clear, close
    """
    if transport is not None and not isinstance(transport, Transport):
        raise TypeError(f"Expected a Transport, got {type(transport)}")

    return CacheEngine(transport=transport, keep_unused_for=keep_unused_for)


__all__ = ["CacheEngine", "create_engine"]
