"""Page merge policy.

A first-page response replaces whatever the entry held. Any later page is
appended, skipping items whose id is already in the collection so the
first occurrence wins. Pagination metadata always comes from the latest
response.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pagetag.types import Page, Pagination


class MergeMode(Enum):
    REPLACE = "replace"
    APPEND = "append"


def identify(item: Any, id_field: str = "id") -> str | None:
    """Id of an item: a mapping key or an attribute. None if it has none."""
    if isinstance(item, Mapping):
        value = item.get(id_field)
    else:
        value = getattr(item, id_field, None)
    return None if value is None else str(value)


def is_first_page(page_args: Mapping[str, Any]) -> bool:
    """``page`` missing or <= 1, or ``cursor`` given as None."""
    if "cursor" in page_args:
        return page_args["cursor"] is None
    page = page_args.get("page")
    if page is None:
        return True
    try:
        return int(page) <= 1
    except (TypeError, ValueError):
        return False


def _unique(items: Iterable[Any], seen: set[str], id_field: str) -> list[Any]:
    result = []
    for item in items:
        item_id = identify(item, id_field)
        if item_id is not None:
            if item_id in seen:
                continue
            seen.add(item_id)
        result.append(item)
    return result


def to_page(raw: Any, items_field: str) -> Page[Any]:
    """Normalize a raw list response into a Page.

    Accepts an existing Page, a bare sequence of items, or a mapping holding
    the items under ``items_field`` and an optional ``pagination`` mapping.
    """
    if isinstance(raw, Page):
        return raw
    if isinstance(raw, Mapping):
        if items_field not in raw:
            raise ValueError(f"Response has no {items_field!r} field")
        meta = raw.get("pagination")
        extra = {k: v for k, v in raw.items() if k not in (items_field, "pagination")}
        return Page(
            items=tuple(raw[items_field] or ()),
            pagination=Pagination.from_mapping(meta) if meta else None,
            extra=extra,
        )
    if isinstance(raw, (list, tuple)):
        return Page(items=tuple(raw))
    raise ValueError(f"Cannot read a page from {type(raw).__name__}")


def merge_pages(
    previous: Page[Any] | None,
    incoming: Page[Any],
    page_args: Mapping[str, Any],
    *,
    id_field: str = "id",
) -> Page[Any]:
    """Replace on a first page, otherwise append the unseen items."""
    if previous is None or is_first_page(page_args):
        items = _unique(incoming.items, set(), id_field)
    else:
        seen = {i for i in (identify(x, id_field) for x in previous.items) if i is not None}
        items = list(previous.items) + _unique(incoming.items, seen, id_field)
    return Page(items=tuple(items), pagination=incoming.pagination, extra=incoming.extra)


@dataclass(frozen=True, slots=True)
class MergeInstruction:
    """How one fetch result folds into an entry's data."""

    mode: MergeMode
    page_args: Mapping[str, Any] = field(default_factory=dict)
    items_field: str | None = None
    id_field: str = "id"

    @property
    def replaces(self) -> bool:
        return self.mode is MergeMode.REPLACE or is_first_page(self.page_args)

    def apply(self, previous: Any, raw: Any) -> Any:
        if self.items_field is None:
            return raw
        incoming = to_page(raw, self.items_field)
        if self.mode is MergeMode.REPLACE:
            return merge_pages(None, incoming, {}, id_field=self.id_field)
        base = previous if isinstance(previous, Page) else None
        return merge_pages(base, incoming, self.page_args, id_field=self.id_field)
