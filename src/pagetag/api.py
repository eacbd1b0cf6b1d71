"""CacheApi - class-based endpoint declaration.

Provides:
- CacheApi: Base class grouping the endpoints of one entity kind
- @query(...): Decorator turning a fetch method into a cached query endpoint
- @mutation(...): Decorator turning a write method into a mutation endpoint
- .invalidate(): Tag invalidation through the shared engine
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any, ClassVar, cast

from pagetag.endpoints import Endpoint, MutationEndpoint, QueryEndpoint, TagsSpec
from pagetag.engine import CacheEngine
from pagetag.handles import MutationState, MutationTrigger, QueryHandle
from pagetag.invalidation import InvalidationResult
from pagetag.keys import DEFAULT_PAGE_FIELDS
from pagetag.merge import MergeMode
from pagetag.tags import TagLike
from pagetag.types import Duration, QueryState


def _check_signature(fn: Any, role: str) -> None:
    params = [p for p in inspect.signature(fn).parameters if p != "self"]
    if len(params) != 1:
        raise TypeError(
            f"@{role} on {fn.__name__}: method must take exactly one "
            f"argument besides self, got {len(params)}"
        )
    if not inspect.iscoroutinefunction(fn):
        raise TypeError(f"@{role} on {fn.__name__}: method must be async")


class QueryDescriptor:
    """Descriptor that wraps query methods."""

    def __init__(self, fn: Any, options: dict[str, Any]) -> None:
        _check_signature(fn, "query")
        self._fn = fn
        self._options = options
        self._attr = fn.__name__

    def __set_name__(self, owner: type, name: str) -> None:
        self._attr = name

    def __get__(self, obj: Any, owner: type) -> Any:
        if obj is None:
            return self
        return BoundQuery(self, obj)

    @property
    def attr(self) -> str:
        return self._attr

    def build(self, api: CacheApi) -> QueryEndpoint:
        options = dict(self._options)
        name = options.pop("name") or self._attr
        kind = options.pop("kind") or api.kind

        async def fetch(args: Any) -> Any:
            return await self._fn(api, args)

        return QueryEndpoint(name=name, kind=kind, fetch=fetch, **options)


class MutationDescriptor:
    """Descriptor that wraps mutation methods."""

    def __init__(self, fn: Any, options: dict[str, Any]) -> None:
        _check_signature(fn, "mutation")
        self._fn = fn
        self._options = options
        self._attr = fn.__name__

    def __set_name__(self, owner: type, name: str) -> None:
        self._attr = name

    def __get__(self, obj: Any, owner: type) -> Any:
        if obj is None:
            return self
        return BoundMutation(self, obj)

    @property
    def attr(self) -> str:
        return self._attr

    def build(self, api: CacheApi) -> MutationEndpoint:
        options = dict(self._options)
        name = options.pop("name") or self._attr
        kind = options.pop("kind") or api.kind

        async def mutate(payload: Any) -> Any:
            return await self._fn(api, payload)

        return MutationEndpoint(name=name, kind=kind, mutate=mutate, **options)


class BoundQuery:
    """A query method bound to an api instance."""

    __slots__ = ("_api", "_descriptor")

    def __init__(self, descriptor: QueryDescriptor, api: CacheApi) -> None:
        self._descriptor = descriptor
        self._api = api

    @property
    def endpoint(self) -> QueryEndpoint:
        return cast(QueryEndpoint, self._api.endpoint(self._descriptor.attr))

    def use(
        self,
        args: Any = None,
        *,
        consumer_id: str | None = None,
        listener: Callable[[QueryState[Any]], None] | None = None,
    ) -> QueryHandle[Any]:
        """Live subscription, see ``CacheEngine.use_query``."""
        return self._api.engine.use_query(
            self.endpoint, args, consumer_id=consumer_id, listener=listener
        )

    def state(self, args: Any = None) -> QueryState[Any] | None:
        return self._api.engine.get_state(self.endpoint, args)

    async def __call__(self, args: Any = None) -> QueryState[Any]:
        return await self._api.engine.query(self.endpoint, args)


class BoundMutation:
    """A mutation method bound to an api instance."""

    __slots__ = ("_api", "_descriptor")

    def __init__(self, descriptor: MutationDescriptor, api: CacheApi) -> None:
        self._descriptor = descriptor
        self._api = api

    @property
    def endpoint(self) -> MutationEndpoint:
        return cast(MutationEndpoint, self._api.endpoint(self._descriptor.attr))

    def use(self) -> tuple[MutationTrigger, MutationState]:
        return self._api.engine.use_mutation(self.endpoint)

    async def __call__(self, payload: Any = None) -> Any:
        return await self._api.engine.mutate(self.endpoint, payload)


def query(
    *,
    items: str | None = None,
    provides: TagsSpec = None,
    name: str | None = None,
    kind: str | None = None,
    id_field: str = "id",
    merge: MergeMode | None = None,
    page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS,
    transform_response: Callable[[Any], Any] | None = None,
    keep_unused_for: Duration | None = None,
    refetch_from_first_page: bool = False,
) -> Callable[[Any], QueryDescriptor]:
    """Decorator for query methods.

    Usage:
        class HotelsApi(CacheApi, kind="Hotel"):
            @query(items="hotels")
            async def get_hotels(self, args: dict) -> dict:
                return await self.client.list_hotels(**args)

    The method takes one argument (the query args) and returns the raw
    response. ``items`` names the list field of paginated responses.
    """
    options = {
        "name": name,
        "kind": kind,
        "items_field": items,
        "id_field": id_field,
        "provides": provides,
        "merge": merge,
        "page_fields": page_fields,
        "transform_response": transform_response,
        "keep_unused_for": keep_unused_for,
        "refetch_from_first_page": refetch_from_first_page,
    }

    def decorator(fn: Any) -> QueryDescriptor:
        return QueryDescriptor(fn, options)

    return decorator


def mutation(
    *,
    invalidates: TagsSpec = (),
    name: str | None = None,
    kind: str | None = None,
    transform_response: Callable[[Any], Any] | None = None,
) -> Callable[[Any], MutationDescriptor]:
    """Decorator for mutation methods.

    Usage:
        class ReviewsApi(CacheApi, kind="Review"):
            @mutation(invalidates=lambda review, _payload: [
                Tag.list("Review"), Tag("Hotel", review["hotelId"]),
            ])
            async def create_review(self, payload: dict) -> dict:
                return await self.client.create_review(payload)
    """
    options = {
        "name": name,
        "kind": kind,
        "invalidates": invalidates,
        "transform_response": transform_response,
    }

    def decorator(fn: Any) -> MutationDescriptor:
        return MutationDescriptor(fn, options)

    return decorator


class CacheApi:
    """Base class for a group of endpoints sharing one entity kind.

    Subclass with ``kind=`` and add @query / @mutation methods:

        class HotelsApi(CacheApi, kind="Hotel"):
            @query()
            async def get_hotel(self, hotel_id: str) -> dict:
                return await fetch_hotel(hotel_id)

    Usage:
        hotels = HotelsApi(engine)
        state = await hotels.get_hotel("h1")
        handle = hotels.get_hotel.use("h1")
    """

    kind: ClassVar[str] = ""
    _descriptors: ClassVar[dict[str, QueryDescriptor | MutationDescriptor]] = {}

    def __init_subclass__(cls, kind: str | None = None, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if kind is not None:
            cls.kind = kind
        descriptors: dict[str, QueryDescriptor | MutationDescriptor] = {}
        for base in reversed(cls.__mro__):
            for attr, value in vars(base).items():
                if isinstance(value, (QueryDescriptor, MutationDescriptor)):
                    descriptors[attr] = value
        cls._descriptors = descriptors

    def __init__(self, engine: CacheEngine) -> None:
        if not self.kind:
            raise TypeError(f"{type(self).__name__} needs a kind, e.g. kind='Hotel'")
        self._engine = engine
        self._endpoints: dict[str, Endpoint] = {
            attr: descriptor.build(self)
            for attr, descriptor in self._descriptors.items()
        }
        engine.register(*self._endpoints.values())

    @property
    def engine(self) -> CacheEngine:
        return self._engine

    def endpoint(self, attr: str) -> Endpoint:
        """The endpoint registered for method ``attr``."""
        return self._endpoints[attr]

    async def invalidate(self, *tags: TagLike) -> InvalidationResult:
        """Invalidate tags of any kind through the shared engine."""
        return await self._engine.invalidate(list(tags))


__all__ = ["BoundMutation", "BoundQuery", "CacheApi", "mutation", "query"]
