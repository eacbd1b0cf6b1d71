"""Reference-counted subscriptions and grace-period eviction."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pagetag.types import QueryState

logger = logging.getLogger(__name__)

Listener = Callable[[QueryState[Any]], None]


@dataclass(eq=False, slots=True)
class Subscription:
    """One consumer's hold on a cache entry."""

    key: str
    consumer_id: str
    keep_unused_for: float
    listener: Listener | None = None
    active: bool = True


class SubscriptionManager:
    """Counts consumers per key and evicts entries nobody holds any more.

    When the last subscription on a key goes away an eviction timer starts;
    a new subscription before it fires cancels it and the entry is reused
    as-is.
    """

    def __init__(
        self,
        *,
        on_evict: Callable[[str], None],
        on_count: Callable[[str, int], None] | None = None,
        keep_unused_for: float = 60.0,
    ) -> None:
        if keep_unused_for < 0:
            raise ValueError("keep_unused_for must not be negative")
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._on_evict = on_evict
        self._on_count = on_count
        self._keep_unused_for = keep_unused_for
        self._ids = itertools.count(1)

    def subscribe(
        self,
        key: str,
        consumer_id: str | None = None,
        listener: Listener | None = None,
        *,
        keep_unused_for: float | None = None,
    ) -> Subscription:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
            logger.debug("Resubscribed to %s within its grace period", key)

        subscription = Subscription(
            key=key,
            consumer_id=consumer_id or f"consumer-{next(self._ids)}",
            keep_unused_for=(
                self._keep_unused_for if keep_unused_for is None else keep_unused_for
            ),
            listener=listener,
        )
        self._subscriptions.setdefault(key, []).append(subscription)
        self._count_changed(key)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription. Releasing twice is a no-op."""
        if not subscription.active:
            return
        subscription.active = False
        key = subscription.key
        remaining = self._subscriptions.get(key, [])
        if subscription in remaining:
            remaining.remove(subscription)
        if not remaining:
            self._subscriptions.pop(key, None)
        self._count_changed(key)
        if not remaining:
            self._schedule_eviction(key, subscription.keep_unused_for)

    def count(self, key: str) -> int:
        return len(self._subscriptions.get(key, ()))

    def subscriptions(self, key: str) -> list[Subscription]:
        return list(self._subscriptions.get(key, ()))

    def is_pending_eviction(self, key: str) -> bool:
        return key in self._timers

    def notify(self, key: str, state: QueryState[Any]) -> None:
        """Deliver a snapshot to the listeners of every active subscription."""
        for subscription in self.subscriptions(key):
            if subscription.listener is None or not subscription.active:
                continue
            try:
                subscription.listener(state)
            except Exception:
                logger.exception(
                    "Listener of %s failed on %s", subscription.consumer_id, key
                )

    def close(self) -> None:
        """Cancel pending evictions and forget all subscriptions."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.active = False
        self._subscriptions.clear()

    def _count_changed(self, key: str) -> None:
        if self._on_count is not None:
            self._on_count(key, self.count(key))

    def _schedule_eviction(self, key: str, delay: float) -> None:
        if delay <= 0:
            self._evict(key)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop left to wait on
            self._evict(key)
            return
        self._timers[key] = loop.call_later(delay, self._evict, key)

    def _evict(self, key: str) -> None:
        self._timers.pop(key, None)
        if self.count(key) == 0:
            logger.debug("Evicting unused entry %s", key)
            self._on_evict(key)
