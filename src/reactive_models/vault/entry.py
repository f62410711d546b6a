"""Cache entry model shared by vaults and queries."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

D = TypeVar("D")


class CacheEntry(BaseModel, Generic[D]):
    """Cached value for one key plus its fetch-state metadata.

    Entries are immutable; every change produces a copy via
    :meth:`evolve`.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    data: D | None = None
    is_loading: bool = False
    is_fetching: bool = False
    is_fetched: bool = False
    error: Any = None
    staled: bool = False
    stale_time: float | None = Field(
        default=None,
        description="Seconds after last_fetched_time the data stays fresh; None never goes stale by time.",
    )
    last_fetched_time: float | None = Field(default=None, description="Epoch seconds of the last successful fetch.")
    extensions: dict[str, Any] = Field(default_factory=dict, description="Consumer-declared extra fields.")

    def evolve(self, **changes: Any) -> CacheEntry[D]:
        """Return a copy with *changes* applied."""
        return self.model_copy(update=changes)

    def is_stale(self, now: float) -> bool:
        """Whether the entry should be refetched (manually staled or past its stale time)."""
        if self.staled:
            return True
        if self.stale_time is None:
            return False
        if self.last_fetched_time is None:
            return True
        return (now - self.last_fetched_time) > self.stale_time


#: QueryModel emits the same shape it stores.
QueryResponse = CacheEntry

BASE_FIELD_NAMES: frozenset[str] = frozenset(CacheEntry.model_fields)

_METADATA_FIELDS: tuple[str, ...] = tuple(name for name in CacheEntry.model_fields if name != "data")


def empty_entry(extensions: Mapping[str, Any] | None = None) -> CacheEntry[Any]:
    """Entry for a key that has never been written."""
    return CacheEntry(extensions=dict(extensions or {}))


def seeded_entry(
    value: Any,
    *,
    now: float,
    stale_time: float | None = None,
    extensions: Mapping[str, Any] | None = None,
) -> CacheEntry[Any]:
    """Entry for a value known up front, counted as freshly fetched at *now*."""
    return CacheEntry(
        data=value,
        is_fetched=True,
        last_fetched_time=now,
        stale_time=stale_time,
        extensions=dict(extensions or {}),
    )


def is_same_base_data(prev: CacheEntry[Any] | None, curr: CacheEntry[Any] | None) -> bool:
    """Compare every metadata field except ``data``."""
    if prev is None or curr is None:
        return prev is curr
    return all(getattr(prev, name) == getattr(curr, name) for name in _METADATA_FIELDS)
