"""Base transport protocol for fetch and mutate collaborators."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """Async transport interface.

    The engine never looks past this: it hands over an endpoint name plus
    args or payload and expects the decoded result back, or an exception.
    """

    async def fetch(self, endpoint: str, args: Any) -> Any:
        """Run a read for ``endpoint``."""
        ...

    async def mutate(self, endpoint: str, payload: Any) -> Any:
        """Run a write for ``endpoint``."""
        ...

    async def close(self) -> None:
        """Release any resources held by the transport."""
        ...
