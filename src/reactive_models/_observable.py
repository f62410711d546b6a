"""Minimal push-based observables used by vaults, queries and command stores.

An :class:`Observable` is anything that can be subscribed to with a plain
callback.  :class:`ChangeFeed` is the replaying, multicast flavour: new
subscribers immediately receive the latest value and every value is
delivered to all subscribers in the order it was published, even when a
subscriber publishes while a value is being delivered.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


class Subscription:
    """Handle returned by :meth:`Observable.subscribe`.

    Usable as a context manager; leaving the block unsubscribes.
    """

    __slots__ = ("_closed", "_teardown")

    def __init__(self, teardown: Callable[[], None] | None = None) -> None:
        self._teardown = teardown
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        teardown, self._teardown = self._teardown, None
        if teardown is not None:
            teardown()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.unsubscribe()


class Observable(Generic[T]):
    """A lazily subscribed stream of values."""

    def __init__(self, on_subscribe: Callable[[Callable[[T], None]], Subscription]) -> None:
        self._on_subscribe = on_subscribe

    def subscribe(self, on_next: Callable[[T], None]) -> Subscription:
        """Start delivering values to *on_next* until the subscription is closed."""
        return self._on_subscribe(on_next)

    def map(self, transform: Callable[[T], U]) -> Observable[U]:
        def _subscribe(on_next: Callable[[U], None]) -> Subscription:
            return self.subscribe(lambda value: on_next(transform(value)))

        return Observable(_subscribe)

    async def stream(self) -> AsyncIterator[T]:
        """Iterate values asynchronously.

        Wrap in :func:`contextlib.aclosing` when breaking out early so the
        underlying subscription is released right away.
        """
        queue: asyncio.Queue[T] = asyncio.Queue()
        subscription = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            subscription.unsubscribe()

    def __aiter__(self) -> AsyncIterator[T]:
        return self.stream()

    async def take(self, count: int) -> list[T]:
        """Collect the first *count* values, then unsubscribe."""
        results: list[T] = []
        if count <= 0:
            return results

        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _on_next(value: T) -> None:
            if done.done():
                return
            results.append(value)
            if len(results) >= count:
                done.set_result(None)

        subscription = self.subscribe(_on_next)
        try:
            await done
        finally:
            subscription.unsubscribe()
        return results

    async def first(self, predicate: Callable[[T], bool] | None = None) -> T:
        """Return the first value (matching *predicate*, if given)."""
        done: asyncio.Future[T] = asyncio.get_running_loop().create_future()

        def _on_next(value: T) -> None:
            if done.done():
                return
            if predicate is None or predicate(value):
                done.set_result(value)

        subscription = self.subscribe(_on_next)
        try:
            return await done
        finally:
            subscription.unsubscribe()


@dataclass(slots=True)
class _Observer(Generic[T]):
    on_next: Callable[[T], None]
    # Sequence number of the latest value when subscribing; older queued
    # values are skipped because the replay already covered them.
    since: int
    closed: bool = False


class ChangeFeed(Observable[T]):
    """Replaying multicast subject holding a current value."""

    def __init__(
        self,
        initial: T,
        *,
        on_subscribers_changed: Callable[[int], None] | None = None,
    ) -> None:
        super().__init__(self._subscribe)
        self._value = initial
        self._observers: list[_Observer[T]] = []
        self._pending: deque[tuple[int, T]] = deque()
        self._seq = 0
        self._dispatching = False
        self._on_subscribers_changed = on_subscribers_changed

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._observers)

    def next(self, value: T) -> None:
        """Publish *value* as the new current value."""
        self._value = value
        self._seq += 1
        self._pending.append((self._seq, value))
        if not self._dispatching:
            self._drain()

    def as_observable(self) -> Observable[T]:
        """Read-only view that hides :meth:`next`."""
        return Observable(self._subscribe)

    def close(self) -> None:
        """Drop every subscriber and pending value."""
        observers, self._observers = self._observers, []
        for observer in observers:
            observer.closed = True
        self._pending.clear()
        if observers:
            self._notify_count()

    def _subscribe(self, on_next: Callable[[T], None]) -> Subscription:
        observer = _Observer(on_next=on_next, since=self._seq)
        self._observers.append(observer)
        self._notify_count()

        was_dispatching = self._dispatching
        self._dispatching = True
        try:
            on_next(self._value)
        except BaseException:
            self._discard(observer)
            raise
        finally:
            self._dispatching = was_dispatching
            if not was_dispatching:
                self._drain()
        return Subscription(lambda: self._discard(observer))

    def _discard(self, observer: _Observer[T]) -> None:
        if observer.closed:
            return
        observer.closed = True
        with contextlib.suppress(ValueError):
            self._observers.remove(observer)
        self._notify_count()

    def _notify_count(self) -> None:
        if self._on_subscribers_changed is not None:
            self._on_subscribers_changed(len(self._observers))

    def _drain(self) -> None:
        self._dispatching = True
        try:
            while self._pending:
                seq, item = self._pending.popleft()
                for observer in tuple(self._observers):
                    if observer.closed or observer.since >= seq:
                        continue
                    try:
                        observer.on_next(item)
                    except Exception:
                        _logger.debug("Change feed subscriber failed", exc_info=True)
        finally:
            self._dispatching = False
