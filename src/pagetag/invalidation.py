"""Tag-based invalidation across every cache family."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from pagetag.store import EntryStore
from pagetag.subscriptions import SubscriptionManager
from pagetag.tags import TagLike, coerce_tags, serialize_tag
from pagetag.types import CacheEntry, Tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InvalidationResult:
    """What one invalidation touched."""

    tags: frozenset[Tag]
    stale: frozenset[str]
    refetched: frozenset[str]


class InvalidationBus:
    """Marks tagged entries stale and refetches the ones still in use.

    Matching rules:
        - ``{kind, id}`` hits entries tagged exactly so, plus entries that
          declared ``{kind, "*"}``.
        - ``{kind, "LIST"}`` hits entries that declared it, plus ``{kind, "*"}``.
        - ``{kind, "*"}`` hits every entry carrying any tag of ``kind``.
    """

    def __init__(
        self,
        store: EntryStore,
        subscriptions: SubscriptionManager,
        refetch: Callable[[CacheEntry], object],
    ) -> None:
        self._store = store
        self._subscriptions = subscriptions
        self._refetch = refetch

    def resolve(self, tags: Iterable[Tag]) -> frozenset[str]:
        """Keys matched by any of ``tags``."""
        index = self._store.index
        keys: set[str] = set()
        for tag in tags:
            if tag.is_wildcard:
                keys |= index.keys_for_kind(tag.kind)
            else:
                keys |= index.keys_for(tag)
                keys |= index.keys_for(Tag.all(tag.kind))
        return frozenset(keys)

    def invalidate(self, tags: Iterable[TagLike]) -> InvalidationResult:
        """Mark every matching entry stale, then refetch the subscribed ones.

        Unsubscribed entries stay stale until their next access.
        """
        wanted = coerce_tags(tags)
        keys = self.resolve(wanted)
        stale = self._store.mark_stale(sorted(keys))

        refetched = []
        for entry in stale:
            if self._subscriptions.count(entry.key) > 0:
                self._refetch(entry)
                refetched.append(entry.key)

        if wanted:
            logger.debug(
                "Invalidated [%s]: %d stale, %d refetching",
                ", ".join(sorted(serialize_tag(t) for t in wanted)),
                len(stale),
                len(refetched),
            )
        return InvalidationResult(
            tags=wanted,
            stale=frozenset(e.key for e in stale),
            refetched=frozenset(refetched),
        )
