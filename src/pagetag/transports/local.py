"""In-process transport routing endpoint names to coroutine functions."""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pagetag.errors import TransportError

Handler = Callable[[Any], Awaitable[Any]]


class LocalTransport:
    """Transport backed by plain async handlers, one per endpoint name.

    Example:
        transport = LocalTransport({
            "getHotels": hotels_service.list,
            "createReview": reviews_service.create,
        })
    """

    def __init__(self, handlers: Mapping[str, Handler] | None = None) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})
        self.calls: list[tuple[str, Any]] = []

    def route(self, endpoint: str, handler: Handler) -> None:
        """Register or replace the handler for ``endpoint``."""
        self._handlers[endpoint] = handler

    async def fetch(self, endpoint: str, args: Any) -> Any:
        return await self._dispatch(endpoint, args)

    async def mutate(self, endpoint: str, payload: Any) -> Any:
        return await self._dispatch(endpoint, payload)

    async def close(self) -> None:
        """Nothing to release for in-process handlers."""
        pass

    async def _dispatch(self, endpoint: str, value: Any) -> Any:
        handler = self._handlers.get(endpoint)
        if handler is None:
            raise TransportError(f"No handler for endpoint {endpoint!r}", status=404)
        self.calls.append((endpoint, value))
        return await handler(value)
