"""Query models: observe a vault entry and keep it fresh.

A :class:`QueryModel` subclass only says *what* to fetch (:meth:`refresh`).
The base class decides, on every vault emission, whether the entry for the
requested params is fresh, stale or missing and runs the refresh in the
background when needed.  Refresh failures never escape the observable; they
land in the entry's ``error`` field.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from reactive_models._hashing import canonical_key
from reactive_models._observable import Observable, Subscription
from reactive_models._retry import call_with_retry
from reactive_models.config import QueryConfig
from reactive_models.vault.entry import CacheEntry, QueryResponse, is_same_base_data
from reactive_models.vault.store import Generation, Vault

_logger = logging.getLogger(__name__)

D = TypeVar("D")


@dataclass(frozen=True, slots=True)
class StoreHandler:
    """Vault operations exposed to view models, with params hashed for them."""

    invalidate: Callable[[], None]
    invalidate_by_key: Callable[[Any], None]
    reset_entry: Callable[[Any], None]
    reset_vault: Callable[[], None]


class QueryModel(ABC, Generic[D]):
    """Base class for cached, self-refreshing queries.

    Usage::

        class UserQuery(QueryModel[User]):
            async def refresh(self, params: Any) -> User:
                return await api.get_user(params["id"])

        users = UserQuery(vault=shared_vault)
        users.query({"id": 7}, stale_time=30).subscribe(render)

    Parameters
    ----------
    vault : Vault or None
        Vault to read and write.  Pass one to share cached entries between
        models; when omitted the model owns a private vault and closes it in
        :meth:`aclose`.
    config : QueryConfig or None
        Retry and default staleness settings.
    """

    def __init__(
        self,
        vault: Vault[D] | None = None,
        *,
        config: QueryConfig | None = None,
    ) -> None:
        self._owns_vault = vault is None
        self._vault: Vault[D] = vault if vault is not None else Vault()
        self._config = config or QueryConfig()
        # key -> generation of the refresh currently running for it
        self._refreshing: dict[str, Generation] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @abstractmethod
    async def refresh(self, params: Any) -> D:
        """Fetch fresh data for *params*.  May raise any exception."""

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> QueryModel[D]:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel running refreshes and close the vault if this model created it."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_vault:
            self._vault.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def vault(self) -> Vault[D]:
        return self._vault

    @property
    def config(self) -> QueryConfig:
        return self._config

    @property
    def store_handler(self) -> StoreHandler:
        vault = self._vault
        return StoreHandler(
            invalidate=vault.invalidate,
            invalidate_by_key=lambda params: vault.invalidate_key(self.get_hashed_key(params)),
            reset_entry=lambda params: vault.reset_entry(self.get_hashed_key(params)),
            reset_vault=vault.reset_vault,
        )

    def query(self, params: Any = None, *, stale_time: float | None = None) -> Observable[QueryResponse[D]]:
        """Observe the entry for *params*, refreshing it whenever it is missing or stale.

        Every subscription re-runs the decision against the current vault
        state, so re-subscribing is how a consumer "re-queries".

        Parameters
        ----------
        params
            Anything :func:`~reactive_models.canonical_key` can hash; passed
            unchanged to :meth:`refresh`.
        stale_time
            Freshness window in seconds written with the next result.  Falls
            back to ``config.stale_time``, then to the entry's current one.
        """
        key = self.get_hashed_key(params)
        requested = stale_time if stale_time is not None else self._config.stale_time

        def _subscribe(on_next: Callable[[QueryResponse[D]], None]) -> Subscription:
            return self._vault.changes().subscribe(lambda _snapshot: on_next(self._evaluate(key, params, requested)))

        return Observable(_subscribe)

    def get_hashed_key(self, params: Any = None) -> str:
        """Cache key for *params*.  Override to use another hashing algorithm."""
        return canonical_key(params)

    def has_staled(self, hashed_key: str) -> bool:
        """Whether the stored entry is stale, manually or by time."""
        entry = self._vault.get(hashed_key)
        if entry is None:
            return False
        return entry.is_stale(self._vault.clock())

    def is_store_valid_to_process(self, hashed_key: str) -> bool:
        """``False`` while the entry is loading, fetching or holding an error."""
        entry = self._vault.get(hashed_key)
        if entry is None:
            return True
        if entry.is_fetching or entry.is_loading:
            return False
        return entry.error is None

    @staticmethod
    def is_same_base_data(prev: CacheEntry[Any] | None, curr: CacheEntry[Any] | None) -> bool:
        """Compare everything but ``data``; lets consumers skip redundant work."""
        return is_same_base_data(prev, curr)

    async def wait_for_refreshes(self) -> None:
        """Wait until every refresh started so far has written its result."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Refresh pipeline
    # ------------------------------------------------------------------

    def _evaluate(self, key: str, params: Any, stale_time: float | None) -> QueryResponse[D]:
        stored = self._vault.get(key)
        if not self.is_store_valid_to_process(key):
            assert stored is not None  # noqa: S101
            return stored

        response = stored if stored is not None else self._vault.blank_entry()
        if not response.is_fetched:
            response = response.evolve(is_loading=True)

        stale_and_fetched = response.is_fetched and self.has_staled(key)
        if not (stale_and_fetched or not response.is_fetched):
            return response

        generation = self._vault.generation(key)
        if self._refreshing.get(key) == generation:
            return response

        effective_stale_time = stale_time if stale_time is not None else response.stale_time
        if stale_and_fetched:
            response = response.evolve(is_fetching=True, staled=True, stale_time=effective_stale_time)
            self._vault.set_store(key, response)

        self._start_refresh(key, params, response, effective_stale_time, generation)
        return response

    def _start_refresh(
        self,
        key: str,
        params: Any,
        previous: CacheEntry[D],
        stale_time: float | None,
        generation: Generation,
    ) -> None:
        self._refreshing[key] = generation
        task = asyncio.get_running_loop().create_task(
            self._refresh_entry(key, params, previous, stale_time, generation),
            name=f"refresh:{key}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh_entry(
        self,
        key: str,
        params: Any,
        previous: CacheEntry[D],
        stale_time: float | None,
        generation: Generation,
    ) -> None:
        _logger.debug("Refreshing %s", key)
        try:
            data = await call_with_retry(lambda: self.refresh(params), self._config.max_retry_call)
        except asyncio.CancelledError:
            self._restore_after_cancel(key, previous, generation)
            raise
        except Exception as exc:
            _logger.debug("Refresh of %s failed: %r", key, exc)
            entry = previous.evolve(error=exc, is_loading=False, is_fetching=False)
        else:
            entry = previous.evolve(
                data=data,
                is_loading=False,
                is_fetching=False,
                is_fetched=True,
                staled=False,
                error=None,
                last_fetched_time=self._vault.clock(),
                stale_time=stale_time,
            )
        finally:
            if self._refreshing.get(key) == generation:
                del self._refreshing[key]

        if self._vault.closed:
            _logger.debug("Vault closed before refresh of %s finished", key)
            return
        self._vault.set_store(key, entry, generation=generation)

    def _restore_after_cancel(self, key: str, previous: CacheEntry[D], generation: Generation) -> None:
        # is_fetching must not outlive the refresh that set it.
        if self._vault.closed:
            return
        stored = self._vault.get(key)
        if stored is None or not stored.is_fetching:
            return
        _logger.debug("Refresh of %s cancelled, restoring entry", key)
        self._vault.set_store(key, previous.evolve(is_loading=False, is_fetching=False), generation=generation)
