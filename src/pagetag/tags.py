"""Tag construction and utilities."""

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pagetag.merge import identify
from pagetag.types import Page, Tag

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:"}
_UNESCAPE_MAP = {"\\\\": "\\", "\\:": ":"}

TagLike = Tag | tuple[str, Any] | str


def serialize_tag(tag: Tag) -> str:
    """Serialize a tag to ``kind:id``, escaping ``:`` and ``\\`` in both parts."""

    def escape(part: str) -> str:
        result = part
        for char, escaped in _ESCAPE_MAP.items():
            result = result.replace(char, escaped)
        return result

    return f"{escape(tag.kind)}:{escape(tag.id)}"


def parse_tag(serialized: str) -> Tag:
    """Parse ``kind:id`` back into a tag. A bare ``kind`` means ``kind:*``."""
    parts: list[str] = []
    current = ""
    i = 0

    while i < len(serialized):
        if serialized[i] == "\\":
            escaped = serialized[i : i + 2]
            if escaped in _UNESCAPE_MAP:
                current += _UNESCAPE_MAP[escaped]
                i += 2
                continue
            current += serialized[i]
            i += 1
        elif serialized[i] == ":" and not parts:
            parts.append(current)
            current = ""
            i += 1
        else:
            current += serialized[i]
            i += 1

    parts.append(current)
    if len(parts) == 1:
        return Tag.all(parts[0])
    return Tag(parts[0], parts[1])


def coerce_tag(value: TagLike) -> Tag:
    """Accept a Tag, a ``(kind, id)`` pair or a ``"kind:id"`` string."""
    if isinstance(value, Tag):
        return value
    if isinstance(value, str):
        return parse_tag(value)
    if isinstance(value, tuple) and len(value) == 2:
        return Tag(value[0], value[1])
    raise TypeError(f"Expected Tag, (kind, id) or 'kind:id', got {value!r}")


def coerce_tags(values: Iterable[TagLike]) -> frozenset[Tag]:
    if isinstance(values, (Tag, str)):
        values = [values]
    return frozenset(coerce_tag(v) for v in values)


def provide_list(kind: str, id_field: str = "id") -> Callable[[Any, Any], list[Tag]]:
    """Tags for a list entry: one per item plus ``{kind, LIST}``.

    Example:
        QueryEndpoint("getHotels", "Hotel", items_field="hotels",
                      provides=provide_list("Hotel"))
    """

    def provides(data: Any, _args: Any) -> list[Tag]:
        tags = [Tag.list(kind)]
        items = data.items if isinstance(data, Page) else (data or ())
        for item in items:
            item_id = identify(item, id_field)
            if item_id is not None:
                tags.append(Tag(kind, item_id))
        return tags

    return provides


def provide_entity(kind: str, id_field: str = "id") -> Callable[[Any, Any], list[Tag]]:
    """Tags for a single-entity entry, keyed by the requested id.

    A scalar arg is the id; mapping args are read at ``id_field``.
    Falls back to the id of the returned entity.
    """

    def provides(data: Any, args: Any) -> list[Tag]:
        if isinstance(args, (str, int)):
            return [Tag(kind, args)]
        if isinstance(args, Mapping) and args.get(id_field) is not None:
            return [Tag(kind, args[id_field])]
        entity_id = identify(data, id_field) if data is not None else None
        return [Tag(kind, entity_id)] if entity_id is not None else []

    return provides
