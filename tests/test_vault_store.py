from __future__ import annotations

import asyncio
import itertools
from typing import Any

import pytest

from reactive_models.config import CacheInvalidationStrategy, VaultConfig, VaultSeed
from reactive_models.exceptions import UnknownExtensionFieldError, VaultClosedError, VaultConfigError
from reactive_models.vault.entry import CacheEntry
from reactive_models.vault.store import Vault


def _no_eviction(**kwargs: Any) -> VaultConfig:
    return VaultConfig(cache_time=None, **kwargs)


def test_seed_entry_is_fetched() -> None:
    vault: Vault[dict[str, int]] = Vault(
        _no_eviction(seed=VaultSeed(key="k", value={"n": 1}, stale_time=1.0)),
        clock=lambda: 50.0,
    )

    entry = vault.get("k")
    assert entry is not None
    assert entry.data == {"n": 1}
    assert entry.is_fetched is True
    assert entry.staled is False
    assert entry.last_fetched_time == 50.0
    assert entry.stale_time == 1.0
    assert vault.get("missing") is None


def test_changes_replays_snapshot_and_emits_once_per_mutation() -> None:
    vault: Vault[str] = Vault(_no_eviction())
    seen: list[dict[str, CacheEntry[str]]] = []

    vault.changes().subscribe(seen.append)
    vault.set_data("a", "1")
    vault.set_is_fetching("a", True)
    vault.invalidate()
    vault.reset_entry("a")

    assert len(seen) == 5
    assert seen[0] == {}
    assert seen[1]["a"].data == "1"
    assert seen[2]["a"].is_fetching is True
    assert seen[3]["a"].staled is True
    assert seen[4] == {}


def test_reset_vault_then_read_is_empty() -> None:
    vault: Vault[str] = Vault(_no_eviction(seed=VaultSeed(key="k", value="v")))
    vault.set_data("other", "x")

    vault.reset_vault()

    seen: list[dict[str, CacheEntry[str]]] = []
    vault.changes().subscribe(seen.append)
    assert seen == [{}]
    assert vault.snapshot == {}


def test_empty_on_new_value_keeps_only_latest_entry() -> None:
    vault: Vault[str] = Vault(_no_eviction(empty_on_new_value=True))

    vault.set_data("a", "1")
    vault.set_data("b", "2")

    assert list(vault.snapshot) == ["b"]


def test_generation_guard_discards_outdated_writes() -> None:
    vault: Vault[str] = Vault(_no_eviction())
    before = vault.generation("k")
    emissions: list[dict[str, CacheEntry[str]]] = []
    vault.changes().subscribe(emissions.append)

    vault.reset_entry("k")
    accepted = vault.set_store("k", CacheEntry(data="late"), generation=before)

    assert accepted is False
    assert vault.get("k") is None
    assert len(emissions) == 2

    current = vault.generation("k")
    assert vault.set_store("k", CacheEntry(data="fresh"), generation=current) is True
    vault.reset_vault()
    assert vault.generation("k") != current
    assert vault.generation("other") != (0, 0)


def test_clearing_the_vault_drops_per_key_generations() -> None:
    vault: Vault[str] = Vault(_no_eviction())
    for key in ("a", "b", "c"):
        vault.reset_entry(key)
    outdated = vault.generation("a")

    vault.reset_vault()

    assert [vault.generation(key) for key in ("a", "b", "c")] == [(1, 0), (1, 0), (1, 0)]
    assert vault.set_store("a", CacheEntry(data="late"), generation=outdated) is False
    assert vault.set_store("a", CacheEntry(data="fresh"), generation=(1, 0)) is True


def test_extension_defaults_and_validation() -> None:
    vault: Vault[str] = Vault(_no_eviction(extension_fields={"page": 1}))

    vault.set_is_fetching("k", True)
    assert vault.get("k").extensions == {"page": 1}  # type: ignore[union-attr]

    vault.set_extension("k", "page", 3)
    assert vault.get("k").extensions == {"page": 3}  # type: ignore[union-attr]

    with pytest.raises(UnknownExtensionFieldError, match="cursor"):
        vault.set_extension("k", "cursor", "abc")
    with pytest.raises(UnknownExtensionFieldError):
        vault.set_store("k", CacheEntry(data="v", extensions={"cursor": 1}))

    vault.set_store("k", CacheEntry(data="v"))
    assert vault.get("k").extensions == {"page": 1}  # type: ignore[union-attr]


@pytest.mark.parametrize("name", ["data", "staled", "extensions", "not an identifier", "1st"])
def test_invalid_extension_field_names_rejected(name: str) -> None:
    with pytest.raises(VaultConfigError):
        VaultConfig(extension_fields={name: None})


def test_closed_vault_rejects_mutations() -> None:
    vault: Vault[str] = Vault(_no_eviction())
    seen: list[dict[str, CacheEntry[str]]] = []
    vault.changes().subscribe(seen.append)

    vault.close()

    assert vault.closed
    assert vault.subscriber_count == 0
    with pytest.raises(VaultClosedError):
        vault.set_data("k", "v")
    with pytest.raises(VaultClosedError):
        vault.changes().subscribe(seen.append)
    assert seen == [{}]


def test_force_vault_built_outside_loop_defers_timer() -> None:
    vault: Vault[str] = Vault(
        VaultConfig(cache_time=10.0, cache_invalidation_strategy=CacheInvalidationStrategy.FORCE)
    )

    assert vault.eviction_pending is False
    vault.close()


@pytest.mark.asyncio
async def test_graceful_eviction_cancelled_by_resubscribe() -> None:
    vault: Vault[str] = Vault(VaultConfig(cache_time=0.05, seed=VaultSeed(key="k", value="seed")))
    assert vault.eviction_pending is False

    sub = vault.changes().subscribe(lambda _: None)
    vault.set_data("other", "x")
    sub.unsubscribe()
    assert vault.eviction_pending is True

    await asyncio.sleep(0.01)
    sub = vault.changes().subscribe(lambda _: None)
    assert vault.eviction_pending is False

    await asyncio.sleep(0.1)
    assert "other" in vault.snapshot
    assert vault.get("k") is not None

    sub.unsubscribe()
    vault.close()


@pytest.mark.asyncio
async def test_graceful_eviction_after_idle_window_reseeds() -> None:
    clock = itertools.count(100)
    vault: Vault[str] = Vault(
        VaultConfig(cache_time=0.05, seed=VaultSeed(key="k", value="seed")),
        clock=lambda: float(next(clock)),
    )
    seeded_at = vault.get("k").last_fetched_time  # type: ignore[union-attr]

    with vault.changes().subscribe(lambda _: None):
        vault.set_data("other", "x")

    await asyncio.sleep(0.15)

    assert "other" not in vault.snapshot
    reseeded = vault.get("k")
    assert reseeded is not None
    assert reseeded.data == "seed"
    assert reseeded.last_fetched_time != seeded_at
    assert vault.eviction_pending is False
    vault.close()


@pytest.mark.asyncio
async def test_graceful_eviction_without_seed_empties_vault() -> None:
    vault: Vault[str] = Vault(VaultConfig(cache_time=0.05))
    vault.reset_entry("a")

    with vault.changes().subscribe(lambda _: None):
        vault.set_data("a", "1")

    await asyncio.sleep(0.15)

    assert vault.snapshot == {}
    assert vault.generation("a") == (1, 0)
    vault.close()


@pytest.mark.asyncio
async def test_disabled_cache_time_never_evicts() -> None:
    vault: Vault[str] = Vault(VaultConfig(cache_time=None))

    with vault.changes().subscribe(lambda _: None):
        vault.set_data("a", "1")

    assert vault.eviction_pending is False
    await asyncio.sleep(0.05)
    assert "a" in vault.snapshot


@pytest.mark.asyncio
async def test_force_eviction_ignores_subscribers_and_rearms() -> None:
    vault: Vault[str] = Vault(
        VaultConfig(cache_time=0.05, cache_invalidation_strategy=CacheInvalidationStrategy.FORCE)
    )
    assert vault.eviction_pending is True
    seen: list[dict[str, CacheEntry[str]]] = []

    with vault.changes().subscribe(seen.append):
        vault.set_data("a", "1")
        await asyncio.sleep(0.12)
        assert vault.snapshot == {}

        vault.set_data("b", "2")
        await asyncio.sleep(0.12)
        assert vault.snapshot == {}
        assert vault.eviction_pending is True

    assert any("b" in snapshot for snapshot in seen)
    vault.close()
    assert vault.eviction_pending is False
