"""Dataref cache and subscription dispatch.

Hierarchy Level: 2
- Imports: SimConstants (Level 0), SimTypes, exceptions (Level 1)
- Used by: client.py

Dispatch rules for one RES batch, subscriptions taken in registration order:

1. A subscription has *changed* when at least one of its datarefs is present
   in the batch. Presence is enough; the value is not compared to the cache.
2. A changed subscription still inside its ``min_delta_time`` window ends the
   pass: it and every later subscription are skipped for this batch.
3. Otherwise its callback receives one positional value per dataref, in
   declared order: batch value, else cached value, else 0.

The batch is merged into the cache after the pass, so callbacks observe the
previous values through the cache.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import deque
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from simlink.constants import SimConstants as c
from simlink.exceptions import SimValueError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from simlink.types import SimTypes

log = logging.getLogger(__name__)


class DatarefCache(Mapping[str, Any]):
    """Last known value per dataref name."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def ensure(self, names: Iterable[str]) -> None:
        """Create a 0 entry for every name not cached yet."""
        for name in names:
            self._values.setdefault(name, c.Subscription.DEFAULT_VALUE)

    def merge(self, batch: SimTypes.DatarefBatch) -> None:
        """Overwrite entries present in ``batch``; keep the others."""
        self._values.update(batch)

    def clear(self) -> None:
        """Forget every value."""
        self._values.clear()


@dataclass
class Subscription:
    """A callback interested in an ordered set of datarefs."""

    datarefs: tuple[str, ...]
    callback: SimTypes.SubscriptionCallback
    min_delta_time: float = c.Subscription.MIN_DELTA_TIME
    precision: float = c.Subscription.PRECISION
    last_fired: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def changed(self, batch: SimTypes.DatarefBatch) -> bool:
        """Check if any watched dataref is present in ``batch``."""
        return any(name in batch for name in self.datarefs)

    def is_throttled(self, now: float) -> bool:
        """Check if the subscription fired less than min_delta_time ago."""
        if self.min_delta_time == 0:
            return False
        return now - self.last_fired < self.min_delta_time

    def arguments(
        self, batch: SimTypes.DatarefBatch, cache: Mapping[str, Any]
    ) -> list[Any]:
        """Build callback arguments in declared dataref order."""
        args = []
        for name in self.datarefs:
            if name in batch:
                args.append(batch[name])
            else:
                args.append(cache.get(name, c.Subscription.DEFAULT_VALUE))
        return args


class SubscriptionDispatcher:
    """Owns the subscriptions and the cache of one client.

    Args:
        clock: Monotonic time source in seconds.

    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.cache = DatarefCache()
        self._clock = clock
        self._subscriptions: list[Subscription] = []
        self._pending: deque[SimTypes.DatarefBatch] = deque()
        self._dispatching = False

    def __len__(self) -> int:
        return len(self._subscriptions)

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        """Registered subscriptions in evaluation order."""
        return tuple(self._subscriptions)

    def add(
        self,
        datarefs: Iterable[str],
        callback: SimTypes.SubscriptionCallback,
        min_delta_time: float = c.Subscription.MIN_DELTA_TIME,
        precision: float = c.Subscription.PRECISION,
    ) -> Subscription:
        """Register a subscription and seed the cache for its datarefs.

        The throttle window starts now: a throttled subscription cannot fire
        before ``min_delta_time`` seconds have passed since registration.

        Raises:
            SimValueError: Negative min_delta_time, or a callback that is not
                callable.

        """
        if min_delta_time < 0:
            msg = "min_delta_time must be >= 0"
            raise SimValueError(msg, details={"min_delta_time": min_delta_time})
        if not callable(callback):
            msg = "callback must be callable"
            raise SimValueError(msg)

        subscription = Subscription(
            datarefs=tuple(datarefs),
            callback=callback,
            min_delta_time=min_delta_time,
            precision=precision,
            last_fired=self._clock(),
        )
        self.cache.ensure(subscription.datarefs)
        self._subscriptions.append(subscription)
        log.debug(
            "Subscription %s registered for %s", subscription.id, subscription.datarefs
        )
        return subscription

    def on_update_batch(self, values: SimTypes.DatarefBatch) -> int:
        """Dispatch one RES batch, then merge it into the cache.

        A batch arriving from inside a callback is queued and dispatched once
        the current pass is over.

        Returns:
            Number of callbacks invoked, including queued batches.

        """
        self._pending.append(values)
        if self._dispatching:
            return 0

        self._dispatching = True
        fired = 0
        try:
            while self._pending:
                fired += self._dispatch(self._pending.popleft())
        finally:
            self._dispatching = False
        return fired

    def _dispatch(self, batch: SimTypes.DatarefBatch) -> int:
        now = self._clock()
        fired = 0
        for subscription in tuple(self._subscriptions):
            if not subscription.changed(batch):
                continue
            if subscription.is_throttled(now):
                log.debug(
                    "Subscription %s throttled, ending pass", subscription.id
                )
                break

            args = subscription.arguments(batch, self.cache)
            subscription.last_fired = now
            fired += 1
            try:
                subscription.callback(*args)
            except Exception:
                log.exception("Subscription %s callback failed", subscription.id)

        self.cache.merge(batch)
        return fired

    def clear(self) -> None:
        """Drop every subscription and cached value."""
        self._subscriptions.clear()
        self._pending.clear()
        self.cache.clear()
