"""Exception taxonomy for the pagetag cache engine."""

from typing import Any


class CacheError(Exception):
    """Base class for every error raised by pagetag."""


class KeyDerivationError(CacheError, TypeError):
    """Query args cannot be turned into a stable cache key.

    Raised straight to the caller. Never retried.
    """


class TransportError(CacheError):
    """A fetch or mutate collaborator failed.

    The original exception, if any, is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.data = data

    def __repr__(self) -> str:
        return f"TransportError({str(self)!r}, status={self.status!r})"


class SequenceDiscarded(CacheError):
    """An out-of-order response was dropped. Internal, never surfaced."""

    def __init__(self, key: str, sequence: int, committed: int) -> None:
        super().__init__(
            f"response #{sequence} for {key} is older than committed #{committed}"
        )
        self.key = key
        self.sequence = sequence
        self.committed = committed


class UnknownEndpointError(CacheError, KeyError):
    """No endpoint is registered under the requested name."""

    def __str__(self) -> str:
        return f"Unknown endpoint: {self.args[0]!r}"
