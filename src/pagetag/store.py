"""Entry store: one CacheEntry per key, sequence-guarded commits."""

from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from pagetag.errors import SequenceDiscarded
from pagetag.index import TagIndex
from pagetag.merge import MergeInstruction
from pagetag.types import CacheEntry, EntryStatus, Tag

logger = logging.getLogger(__name__)

TagsSource = Iterable[Tag] | Callable[[Any], Iterable[Tag]]


class EntryStore:
    """Holds every cache entry and keeps the tag index in step with it.

    The commit, stale-marking and removal methods here are the only writers
    of ``CacheEntry`` and ``TagIndex``.
    """

    def __init__(
        self,
        index: TagIndex | None = None,
        *,
        on_change: Callable[[CacheEntry], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._index = index if index is not None else TagIndex()
        self._sequence = itertools.count(1)
        self._on_change = on_change
        self._clock = clock

    @property
    def index(self) -> TagIndex:
        return self._index

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def get_or_create(self, key: str, endpoint: str, args: Any) -> CacheEntry:
        """Return the entry for ``key``, creating an idle one if missing."""
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, endpoint=endpoint, args=args)
            self._entries[key] = entry
            logger.debug("Created entry %s", key)
        return entry

    def begin_fetch(self, key: str, args: Any) -> int:
        """Mark ``key`` as loading and hand out the sequence for this fetch."""
        entry = self._require(key)
        sequence = next(self._sequence)
        entry.sequence = sequence
        entry.args = args
        entry.status = EntryStatus.LOADING
        self._changed(entry)
        return sequence

    def commit_success(
        self,
        key: str,
        sequence: int,
        raw_page: Any,
        instruction: MergeInstruction,
        tags: TagsSource,
        *,
        signature: str | None = None,
    ) -> CacheEntry | None:
        """Fold a response into the entry and re-index its tags.

        ``tags`` is either the final tag set or a callable computing it from
        the merged data. Returns None if the entry was evicted meanwhile.

        Raises:
            SequenceDiscarded: a newer response was already committed.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Dropping response #%d for evicted entry %s", sequence, key)
            return None
        self._guard(entry, sequence)

        data = instruction.apply(entry.data, raw_page)
        entry.tags = frozenset(tags(data) if callable(tags) else tags)
        entry.data = data
        self._index.replace(key, entry.tags)
        entry.error = None
        entry.committed_sequence = sequence
        entry.last_args_signature = signature
        entry.fulfilled_at = self._clock()
        # a newer fetch may still be in flight
        entry.status = (
            EntryStatus.SUCCESS if sequence >= entry.sequence else EntryStatus.LOADING
        )
        if sequence > entry.stale_before:
            entry.is_stale = False
        self._changed(entry)
        return entry

    def commit_error(
        self, key: str, sequence: int, error: BaseException
    ) -> CacheEntry | None:
        """Record a failed fetch, keeping whatever data the entry had.

        Raises:
            SequenceDiscarded: a newer response was already committed.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Dropping error #%d for evicted entry %s", sequence, key)
            return None
        self._guard(entry, sequence)

        entry.error = error
        entry.committed_sequence = sequence
        entry.status = (
            EntryStatus.ERROR if sequence >= entry.sequence else EntryStatus.LOADING
        )
        self._changed(entry)
        return entry

    def mark_stale(self, keys: Iterable[str]) -> list[CacheEntry]:
        """Flag entries stale without touching their data."""
        marked = []
        for key in keys:
            entry = self._entries.get(key)
            if entry is None:
                continue
            entry.is_stale = True
            entry.stale_before = entry.sequence
            marked.append(entry)
            self._changed(entry)
        return marked

    def set_subscriber_count(self, key: str, count: int) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.subscriber_count = count

    def remove(self, key: str) -> CacheEntry | None:
        """Delete the entry and its tag associations."""
        entry = self._entries.pop(key, None)
        self._index.remove(key)
        if entry is not None:
            logger.debug("Removed entry %s", key)
        return entry

    def clear(self) -> None:
        self._entries.clear()
        self._index.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def _require(self, key: str) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            raise KeyError(f"No cache entry for {key!r}")
        return entry

    def _guard(self, entry: CacheEntry, sequence: int) -> None:
        if sequence < entry.committed_sequence:
            raise SequenceDiscarded(entry.key, sequence, entry.committed_sequence)

    def _changed(self, entry: CacheEntry) -> None:
        if self._on_change is not None:
            self._on_change(entry)
