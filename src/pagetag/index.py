"""Inverted index from tags to the cache keys that carry them."""

from collections.abc import Iterable

from pagetag.types import Tag


class TagIndex:
    """Bidirectional ``Tag -> keys`` / ``key -> tags`` map.

    Written only from ``EntryStore`` commits and removals.
    """

    def __init__(self) -> None:
        self._keys_by_tag: dict[Tag, set[str]] = {}
        self._tags_by_key: dict[str, frozenset[Tag]] = {}
        self._tags_by_kind: dict[str, set[Tag]] = {}

    def replace(self, key: str, tags: Iterable[Tag]) -> None:
        """Swap the tags of ``key`` for ``tags``."""
        self.remove(key)
        new_tags = frozenset(tags)
        if not new_tags:
            return
        self._tags_by_key[key] = new_tags
        for tag in new_tags:
            self._keys_by_tag.setdefault(tag, set()).add(key)
            self._tags_by_kind.setdefault(tag.kind, set()).add(tag)

    def remove(self, key: str) -> frozenset[Tag]:
        """Drop every association of ``key``. Returns the tags it had."""
        old_tags = self._tags_by_key.pop(key, frozenset())
        for tag in old_tags:
            keys = self._keys_by_tag.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._keys_by_tag[tag]
                kind_tags = self._tags_by_kind.get(tag.kind)
                if kind_tags is not None:
                    kind_tags.discard(tag)
                    if not kind_tags:
                        del self._tags_by_kind[tag.kind]
        return old_tags

    def tags_for(self, key: str) -> frozenset[Tag]:
        return self._tags_by_key.get(key, frozenset())

    def keys_for(self, tag: Tag) -> frozenset[str]:
        """Keys indexed under exactly ``tag``."""
        return frozenset(self._keys_by_tag.get(tag, ()))

    def keys_for_kind(self, kind: str) -> frozenset[str]:
        """Keys carrying any tag of ``kind``."""
        keys: set[str] = set()
        for tag in self._tags_by_kind.get(kind, ()):
            keys |= self._keys_by_tag.get(tag, set())
        return frozenset(keys)

    def clear(self) -> None:
        self._keys_by_tag.clear()
        self._tags_by_key.clear()
        self._tags_by_kind.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._tags_by_key

    def __len__(self) -> int:
        return len(self._tags_by_key)
