"""Pure snapshot transforms applied by :class:`~reactive_models.vault.store.Vault`.

Every function takes the current key → entry mapping and returns a brand new
``dict``.  Entries are never changed in place, so a snapshot handed to a
subscriber stays valid forever.

Single-field setters create a default entry when the key is missing.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from reactive_models.vault.entry import CacheEntry, empty_entry

D = TypeVar("D")

Snapshot = Mapping[str, CacheEntry[D]]


def _merge(
    snapshot: Snapshot[D],
    key: str,
    defaults: Mapping[str, Any] | None,
    **changes: Any,
) -> dict[str, CacheEntry[D]]:
    current = snapshot.get(key)
    if current is None:
        current = empty_entry(defaults)
    updated = dict(snapshot)
    updated[key] = current.evolve(**changes)
    return updated


def set_data(
    snapshot: Snapshot[D],
    key: str,
    data: D,
    *,
    empty_on_new_value: bool = False,
    defaults: Mapping[str, Any] | None = None,
) -> dict[str, CacheEntry[D]]:
    """Replace only ``data`` of *key*; with *empty_on_new_value* the vault is cleared first."""
    if empty_on_new_value:
        snapshot = {}
    return _merge(snapshot, key, defaults, data=data)


def set_store(
    snapshot: Snapshot[D],
    key: str,
    entry: CacheEntry[D],
    *,
    empty_on_new_value: bool = False,
) -> dict[str, CacheEntry[D]]:
    """Replace the whole entry for *key*."""
    updated = {} if empty_on_new_value else dict(snapshot)
    updated[key] = entry
    return updated


def set_is_fetching(
    snapshot: Snapshot[D], key: str, is_fetching: bool, *, defaults: Mapping[str, Any] | None = None
) -> dict[str, CacheEntry[D]]:
    return _merge(snapshot, key, defaults, is_fetching=is_fetching)


def set_is_fetched(
    snapshot: Snapshot[D], key: str, is_fetched: bool, *, defaults: Mapping[str, Any] | None = None
) -> dict[str, CacheEntry[D]]:
    return _merge(snapshot, key, defaults, is_fetched=is_fetched)


def set_is_loading(
    snapshot: Snapshot[D], key: str, is_loading: bool, *, defaults: Mapping[str, Any] | None = None
) -> dict[str, CacheEntry[D]]:
    return _merge(snapshot, key, defaults, is_loading=is_loading)


def set_last_fetched_time(
    snapshot: Snapshot[D], key: str, time: float | None, *, defaults: Mapping[str, Any] | None = None
) -> dict[str, CacheEntry[D]]:
    return _merge(snapshot, key, defaults, last_fetched_time=time)


def set_error(
    snapshot: Snapshot[D], key: str, error: Any, *, defaults: Mapping[str, Any] | None = None
) -> dict[str, CacheEntry[D]]:
    return _merge(snapshot, key, defaults, error=error)


def set_extension(
    snapshot: Snapshot[D], key: str, name: str, value: Any, *, defaults: Mapping[str, Any] | None = None
) -> dict[str, CacheEntry[D]]:
    """Set one extension field.  Name validation is the vault's job."""
    current = snapshot.get(key)
    extensions = dict(current.extensions if current is not None else (defaults or {}))
    extensions[name] = value
    return _merge(snapshot, key, defaults, extensions=extensions)


def invalidate(snapshot: Snapshot[D]) -> dict[str, CacheEntry[D]]:
    """Mark every entry stale.

    A standing error is cleared too, otherwise queries would keep serving the
    error without ever refetching.
    """
    return {key: entry.evolve(staled=True, error=None) for key, entry in snapshot.items()}


def invalidate_key(snapshot: Snapshot[D], key: str) -> dict[str, CacheEntry[D]]:
    """Mark one entry stale (and clear its error).  Unknown keys are left alone."""
    updated = dict(snapshot)
    entry = updated.get(key)
    if entry is not None:
        updated[key] = entry.evolve(staled=True, error=None)
    return updated


def reset_entry(snapshot: Snapshot[D], key: str) -> dict[str, CacheEntry[D]]:
    """Drop *key*; its next read is a miss."""
    updated = dict(snapshot)
    updated.pop(key, None)
    return updated


def reset_vault(_snapshot: Snapshot[D]) -> dict[str, CacheEntry[D]]:
    return {}
