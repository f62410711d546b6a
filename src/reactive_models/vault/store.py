"""Keyed cache vault with a replaying change feed and eviction scheduler.

This is the only component allowed to change cache entries.  Each public
mutator derives a new snapshot through :mod:`reactive_models.vault.mutators`
and publishes it exactly once on :meth:`Vault.changes`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from reactive_models._observable import ChangeFeed, Observable, Subscription
from reactive_models.config import CacheInvalidationStrategy, VaultConfig
from reactive_models.exceptions import UnknownExtensionFieldError, VaultClosedError
from reactive_models.vault import mutators
from reactive_models.vault.entry import CacheEntry, empty_entry, seeded_entry

_logger = logging.getLogger(__name__)

D = TypeVar("D")

#: ``(vault epoch, key generation)``; see :meth:`Vault.generation`.
Generation = tuple[int, int]


class Vault(Generic[D]):
    """In-memory map of cache key → :class:`CacheEntry`.

    Eviction follows ``config.cache_invalidation_strategy``:

    * ``FORCE`` arms a timer at creation and empties (or re-seeds) the vault
      every ``cache_time`` seconds, subscribers or not.
    * ``GRACEFUL`` arms the timer only when the last :meth:`changes`
      subscriber leaves and cancels it as soon as someone subscribes again.

    Timers need an event loop.  When a vault is built outside a running
    loop, the FORCE timer is armed on the first subscription instead.

    Parameters
    ----------
    config : VaultConfig or None
        Eviction, seeding and extension settings.
    clock : Callable[[], float]
        Epoch-seconds clock used for ``last_fetched_time`` and staleness.
    loop : asyncio.AbstractEventLoop or None
        Loop for eviction timers.  Defaults to the running loop.
    """

    def __init__(
        self,
        config: VaultConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config or VaultConfig()
        self._clock = clock
        self._loop = loop
        self._extension_defaults: dict[str, Any] = dict(self._config.extension_fields)
        self._epoch = 0
        self._generations: dict[str, int] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False
        self._feed: ChangeFeed[dict[str, CacheEntry[D]]] = ChangeFeed(
            self._initial_snapshot(),
            on_subscribers_changed=self._on_subscribers_changed,
        )
        if self._config.cache_invalidation_strategy is CacheInvalidationStrategy.FORCE:
            self._arm_timer()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def snapshot(self) -> dict[str, CacheEntry[D]]:
        """Current key → entry map.  Treat as read-only."""
        return self._feed.value

    @property
    def subscriber_count(self) -> int:
        return self._feed.subscriber_count

    @property
    def eviction_pending(self) -> bool:
        """Whether an eviction timer is currently armed."""
        return self._timer is not None

    def get(self, key: str) -> CacheEntry[D] | None:
        return self._feed.value.get(key)

    def blank_entry(self) -> CacheEntry[D]:
        """A never-fetched entry carrying the declared extension defaults."""
        return empty_entry(self._extension_defaults)

    def changes(self) -> Observable[dict[str, CacheEntry[D]]]:
        """Observable of every snapshot, replaying the current one on subscribe."""
        return Observable(self._subscribe_changes)

    def generation(self, key: str) -> Generation:
        """Token that changes whenever *key* is reset or the vault is cleared.

        Refreshes capture it before starting and hand it back to
        :meth:`set_store` so a late result can't resurrect a dropped entry.
        """
        return (self._epoch, self._generations.get(key, 0))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_data(self, key: str, data: D) -> None:
        self._publish(
            mutators.set_data(
                self.snapshot,
                key,
                data,
                empty_on_new_value=self._config.empty_on_new_value,
                defaults=self._extension_defaults,
            )
        )

    def set_store(self, key: str, entry: CacheEntry[D], *, generation: Generation | None = None) -> bool:
        """Replace the entry for *key*.

        Returns ``False`` (and changes nothing) when *generation* was given
        and no longer matches :meth:`generation`.
        """
        self._ensure_open()
        if generation is not None and generation != self.generation(key):
            _logger.debug("Discarding write to %s: generation %s is outdated", key, generation)
            return False
        entry = entry.evolve(extensions=self._checked_extensions(entry.extensions))
        self._publish(
            mutators.set_store(
                self.snapshot,
                key,
                entry,
                empty_on_new_value=self._config.empty_on_new_value,
            )
        )
        return True

    def set_is_fetching(self, key: str, is_fetching: bool) -> None:
        self._publish(mutators.set_is_fetching(self.snapshot, key, is_fetching, defaults=self._extension_defaults))

    def set_is_fetched(self, key: str, is_fetched: bool) -> None:
        self._publish(mutators.set_is_fetched(self.snapshot, key, is_fetched, defaults=self._extension_defaults))

    def set_is_loading(self, key: str, is_loading: bool) -> None:
        self._publish(mutators.set_is_loading(self.snapshot, key, is_loading, defaults=self._extension_defaults))

    def set_last_fetched_time(self, key: str, time: float | None) -> None:
        self._publish(mutators.set_last_fetched_time(self.snapshot, key, time, defaults=self._extension_defaults))

    def set_error(self, key: str, error: Any) -> None:
        self._publish(mutators.set_error(self.snapshot, key, error, defaults=self._extension_defaults))

    def set_extension(self, key: str, name: str, value: Any) -> None:
        """Set a declared extension field on *key*."""
        self._check_extension_name(name)
        self._publish(mutators.set_extension(self.snapshot, key, name, value, defaults=self._extension_defaults))

    def invalidate(self) -> None:
        """Mark every entry stale."""
        self._publish(mutators.invalidate(self.snapshot))

    def invalidate_key(self, key: str) -> None:
        self._publish(mutators.invalidate_key(self.snapshot, key))

    def reset_entry(self, key: str) -> None:
        """Remove *key*; in-flight refreshes for it are discarded."""
        self._ensure_open()
        self._generations[key] = self._generations.get(key, 0) + 1
        self._publish(mutators.reset_entry(self.snapshot, key))

    def reset_vault(self) -> None:
        """Remove every entry; in-flight refreshes are discarded."""
        self._ensure_open()
        self._epoch += 1
        self._generations.clear()
        self._publish(mutators.reset_vault(self.snapshot))

    def close(self) -> None:
        """Cancel eviction and detach every subscriber."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        self._feed.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise VaultClosedError("Vault is closed")

    def _publish(self, snapshot: dict[str, CacheEntry[D]]) -> None:
        self._ensure_open()
        self._feed.next(snapshot)

    def _subscribe_changes(self, on_next: Callable[[dict[str, CacheEntry[D]]], None]) -> Subscription:
        self._ensure_open()
        return self._feed.subscribe(on_next)

    def _check_extension_name(self, name: str) -> None:
        if name not in self._extension_defaults:
            raise UnknownExtensionFieldError(name, declared=frozenset(self._extension_defaults))

    def _checked_extensions(self, extensions: Mapping[str, Any]) -> dict[str, Any]:
        for name in extensions:
            self._check_extension_name(name)
        return {**self._extension_defaults, **extensions}

    def _initial_snapshot(self) -> dict[str, CacheEntry[D]]:
        seed = self._config.seed
        if seed is None:
            return {}
        entry = seeded_entry(
            seed.value,
            now=self._clock(),
            stale_time=seed.stale_time,
            extensions=self._extension_defaults,
        )
        return {seed.key: entry}

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _resolve_loop(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                return None
        return self._loop

    def _on_subscribers_changed(self, count: int) -> None:
        if self._closed:
            return
        if self._config.cache_invalidation_strategy is CacheInvalidationStrategy.FORCE:
            # Deferred arming for vaults created outside a running loop.
            if self._timer is None:
                self._arm_timer()
            return
        if count > 0:
            self._cancel_timer()
        else:
            self._arm_timer()

    def _arm_timer(self) -> None:
        self._cancel_timer()
        cache_time = self._config.cache_time
        if cache_time is None or self._closed:
            return
        loop = self._resolve_loop()
        if loop is None:
            _logger.debug("No running event loop; eviction timer deferred")
            return
        self._timer = loop.call_later(cache_time, self._evict)

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _evict(self) -> None:
        self._timer = None
        if self._closed:
            return
        _logger.debug(
            "Evicting %d cache entries (%s)",
            len(self.snapshot),
            self._config.cache_invalidation_strategy.value,
        )
        self._epoch += 1
        self._generations.clear()
        self._feed.next(self._initial_snapshot())
        if self._config.cache_invalidation_strategy is CacheInvalidationStrategy.FORCE:
            self._arm_timer()
