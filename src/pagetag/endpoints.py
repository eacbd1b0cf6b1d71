"""Declarative endpoint descriptors.

Every query endpoint is described once: which tags its data provides, how
pages merge, which args are pagination. The engine does the rest.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from pagetag.keys import (
    DEFAULT_PAGE_FIELDS,
    args_signature,
    derive_key,
    page_args,
    request_key,
)
from pagetag.merge import MergeInstruction, MergeMode
from pagetag.tags import TagLike, coerce_tags, provide_entity, provide_list
from pagetag.types import Duration, Tag

FetchFn = Callable[[Any], Awaitable[Any]]
TagsSpec = Union[Iterable[TagLike], Callable[[Any, Any], Iterable[TagLike]], None]


def _resolve_tags(spec: TagsSpec, first: Any, second: Any) -> frozenset[Tag]:
    if spec is None:
        return frozenset()
    if callable(spec):
        return coerce_tags(spec(first, second) or ())
    return coerce_tags(spec)


@dataclass(frozen=True, slots=True)
class QueryEndpoint:
    """A cached read.

    ``items_field`` marks a list endpoint: the response holds its items under
    that field (or is a bare list) and pages append by default. Without it
    the endpoint is singular and every response replaces the data.

    ``provides`` defaults to one tag per item plus ``{kind, LIST}`` for list
    endpoints and ``{kind, <requested id>}`` for singular ones. It is
    evaluated against the merged data.
    """

    name: str
    kind: str
    fetch: FetchFn | None = None
    items_field: str | None = None
    id_field: str = "id"
    provides: TagsSpec = None
    merge: MergeMode | None = None
    page_fields: tuple[str, ...] = DEFAULT_PAGE_FIELDS
    transform_response: Callable[[Any], Any] | None = None
    keep_unused_for: Duration | None = None
    refetch_from_first_page: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Endpoint name must not be empty")
        if self.merge is None:
            mode = MergeMode.APPEND if self.items_field else MergeMode.REPLACE
            object.__setattr__(self, "merge", mode)
        if self.merge is MergeMode.APPEND and not self.items_field:
            raise ValueError(f"{self.name}: append merge needs an items_field")

    @property
    def is_list(self) -> bool:
        return self.items_field is not None

    def key(self, args: Any) -> str:
        return derive_key(self.name, args, self.page_fields)

    def request_key(self, args: Any) -> str:
        return request_key(self.name, args, self.page_fields)

    def signature(self, args: Any) -> str:
        return args_signature(args, self.page_fields)

    def instruction(self, args: Any) -> MergeInstruction:
        return MergeInstruction(
            mode=self.merge or MergeMode.REPLACE,
            page_args=page_args(args, self.page_fields),
            items_field=self.items_field,
            id_field=self.id_field,
        )

    def tags_for(self, data: Any, args: Any) -> frozenset[Tag]:
        spec = self.provides
        if spec is None:
            if self.is_list:
                spec = provide_list(self.kind, self.id_field)
            else:
                spec = provide_entity(self.kind, self.id_field)
        return _resolve_tags(spec, data, args)

    def first_page_args(self, args: Any) -> Any:
        """``args`` rewound to the first page."""
        if not isinstance(args, Mapping):
            return args
        rewound = dict(args)
        if "cursor" in rewound:
            rewound["cursor"] = None
        if "page" in rewound:
            rewound["page"] = 1
        return rewound


@dataclass(frozen=True, slots=True)
class MutationEndpoint:
    """A write that invalidates tags once it succeeds.

    ``invalidates`` may name tags of any kind, not only ``kind``: a new
    review invalidating ``{Hotel, hotelId}`` is declared right here.
    """

    name: str
    kind: str
    mutate: FetchFn | None = None
    invalidates: TagsSpec = ()
    transform_response: Callable[[Any], Any] | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Endpoint name must not be empty")

    def tags_for(self, result: Any, payload: Any) -> frozenset[Tag]:
        return _resolve_tags(self.invalidates, result, payload)


Endpoint = QueryEndpoint | MutationEndpoint
