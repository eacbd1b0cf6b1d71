"""Core types for the pagetag cache engine."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

LIST_ID = "LIST"
ALL_ID = "*"


@dataclass(frozen=True, slots=True)
class Tag:
    """Invalidation label: an entity kind plus an instance id.

    ``id`` is either a concrete id, ``"LIST"`` (any collection of the kind)
    or ``"*"`` (every entry of the kind).
    """

    kind: str
    id: str

    def __post_init__(self) -> None:
        if not self.kind:
            raise ValueError("Tag kind must not be empty")
        if not isinstance(self.id, str):
            object.__setattr__(self, "id", str(self.id))

    @classmethod
    def list(cls, kind: str) -> "Tag":
        return cls(kind, LIST_ID)

    @classmethod
    def all(cls, kind: str) -> "Tag":
        return cls(kind, ALL_ID)

    @property
    def is_list(self) -> bool:
        return self.id == LIST_ID

    @property
    def is_wildcard(self) -> bool:
        return self.id == ALL_ID

    def __repr__(self) -> str:
        return f"Tag({self.kind}:{self.id})"


class EntryStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Pagination:
    """Pagination metadata of one list response."""

    page: int
    total_pages: int
    total: int | None = None
    limit: int | None = None

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Pagination":
        """Read ``page``/``currentPage``, ``totalPages``, ``total`` and ``limit``."""
        page = data.get("page", data.get("currentPage", 1))
        total_pages = data.get("totalPages", data.get("total_pages", page))
        total = data.get("total")
        limit = data.get("limit")
        return cls(
            page=int(page),
            total_pages=int(total_pages),
            total=int(total) if total is not None else None,
            limit=int(limit) if limit is not None else None,
        )


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """A normalized list payload: the accumulated items plus latest metadata."""

    items: tuple[T, ...]
    pagination: Pagination | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_more(self) -> bool:
        return self.pagination is not None and self.pagination.has_more

    def __len__(self) -> int:
        return len(self.items)


@dataclass(slots=True)
class CacheEntry:
    """Stored state for one (endpoint, filter signature) pair.

    Written only by ``EntryStore``; consumers receive ``QueryState`` copies.
    """

    key: str
    endpoint: str
    args: Any
    status: EntryStatus = EntryStatus.IDLE
    data: Any = None
    error: BaseException | None = None
    tags: frozenset[Tag] = frozenset()
    subscriber_count: int = 0
    last_args_signature: str | None = None
    sequence: int = 0  # latest issued fetch
    committed_sequence: int = 0
    stale_before: int = 0  # fetches issued at or below this predate the last invalidation
    is_stale: bool = False
    fulfilled_at: float | None = None  # loop time of the last successful commit


@dataclass(frozen=True, slots=True)
class QueryState(Generic[T]):
    """Immutable snapshot of an entry as seen by a consumer."""

    key: str
    endpoint: str
    status: EntryStatus
    data: T | None = None
    error: BaseException | None = None
    is_stale: bool = False

    @property
    def is_fetching(self) -> bool:
        return self.status is EntryStatus.LOADING

    @property
    def is_loading(self) -> bool:
        """First load: fetching with nothing to show yet."""
        return self.status is EntryStatus.LOADING and self.data is None

    @property
    def is_success(self) -> bool:
        return self.status is EntryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is EntryStatus.ERROR

    @property
    def has_more(self) -> bool:
        return isinstance(self.data, Page) and self.data.has_more

    @classmethod
    def of(cls, entry: CacheEntry) -> "QueryState[Any]":
        return cls(
            key=entry.key,
            endpoint=entry.endpoint,
            status=entry.status,
            data=entry.data,
            error=entry.error,
            is_stale=entry.is_stale,
        )


# Duration type alias
Duration = str | int | float  # "250ms", "30s", "5m", "1h" or seconds
