"""Vault and query configuration for reactive_models."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from reactive_models._constants import DEFAULT_CACHE_TIME, DEFAULT_MAX_RETRY_CALL, ENV_PREFIX
from reactive_models._hashing import canonical_key
from reactive_models.exceptions import ReactiveModelsConfigError, VaultConfigError
from reactive_models.vault.entry import BASE_FIELD_NAMES

_DISABLED_VALUES = frozenset({"none", "null", "off", "disabled", ""})


class CacheInvalidationStrategy(StrEnum):
    """How a vault decides when to evict its entries."""

    FORCE = "force"
    GRACEFUL = "graceful"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_seconds(name: str, value: str) -> float | None:
    if value.strip().lower() in _DISABLED_VALUES:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ReactiveModelsConfigError(f"{name} must be a number of seconds or 'none', got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class VaultSeed:
    """Single entry a vault starts with (and is re-seeded with on eviction).

    Parameters
    ----------
    key : str
        Cache key the value is stored under.
    value : Any
        Cached data.  Seeded entries count as already fetched.
    stale_time : float or None
        Seconds the seeded value stays fresh.  ``None`` never goes stale by time.
    """

    key: str
    value: Any
    stale_time: float | None = None

    @classmethod
    def for_params(cls, params: Any, value: Any, stale_time: float | None = None) -> VaultSeed:
        """Seed the entry a query with *params* would read."""
        return cls(key=canonical_key(params), value=value, stale_time=stale_time)


@dataclasses.dataclass(frozen=True)
class VaultConfig:
    """Vault construction options.

    Parameters
    ----------
    cache_time : float or None
        Eviction interval in seconds.  ``None`` disables eviction entirely.
        Defaults to 3 minutes.
    cache_invalidation_strategy : CacheInvalidationStrategy
        ``FORCE`` evicts every ``cache_time`` no matter who is watching;
        ``GRACEFUL`` only evicts after ``cache_time`` without subscribers.
    empty_on_new_value : bool
        When set, ``set_data``/``set_store`` drop every other entry so the
        vault only ever holds the latest result.
    seed : VaultSeed or None
        Optional initial entry.
    extension_fields : Mapping[str, Any]
        Extra per-entry fields and their defaults.  Names must be
        identifiers and must not shadow a base entry field.
    """

    cache_time: float | None = DEFAULT_CACHE_TIME
    cache_invalidation_strategy: CacheInvalidationStrategy = CacheInvalidationStrategy.GRACEFUL
    empty_on_new_value: bool = False
    seed: VaultSeed | None = None
    extension_fields: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.cache_time is not None and self.cache_time <= 0:
            raise VaultConfigError(f"cache_time must be positive or None, got {self.cache_time}")
        try:
            strategy = CacheInvalidationStrategy(self.cache_invalidation_strategy)
        except ValueError as exc:
            raise VaultConfigError(f"Unknown cache invalidation strategy {self.cache_invalidation_strategy!r}") from exc
        object.__setattr__(self, "cache_invalidation_strategy", strategy)

        if self.seed is not None and not self.seed.key:
            raise VaultConfigError("seed key must be non-empty")

        for name in self.extension_fields:
            if not isinstance(name, str) or not name.isidentifier():
                raise VaultConfigError(f"Extension field name {name!r} is not an identifier")
            if name in BASE_FIELD_NAMES:
                raise VaultConfigError(f"Extension field {name!r} shadows a base entry field")
        object.__setattr__(self, "extension_fields", dict(self.extension_fields))

    @classmethod
    def from_env(cls, **overrides: Any) -> VaultConfig:
        """Create configuration from environment variables.

        Reads ``REACTIVE_MODELS_CACHE_TIME`` (seconds, or ``none`` to
        disable eviction), ``REACTIVE_MODELS_CACHE_STRATEGY`` and
        ``REACTIVE_MODELS_EMPTY_ON_NEW_VALUE``.  Explicit keyword arguments
        override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        cache_time_env = env.get(f"{ENV_PREFIX}CACHE_TIME")
        if cache_time_env is not None and "cache_time" not in overrides:
            config_kwargs["cache_time"] = _env_seconds(f"{ENV_PREFIX}CACHE_TIME", cache_time_env)

        strategy_env = env.get(f"{ENV_PREFIX}CACHE_STRATEGY")
        if strategy_env is not None and "cache_invalidation_strategy" not in overrides:
            config_kwargs["cache_invalidation_strategy"] = strategy_env.strip().lower()

        if "empty_on_new_value" not in overrides:
            config_kwargs["empty_on_new_value"] = _env_bool(env.get(f"{ENV_PREFIX}EMPTY_ON_NEW_VALUE"), False)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class QueryConfig:
    """Per-model refresh options.

    Parameters
    ----------
    max_retry_call : int
        Total refresh attempts, first call included.  Values ``<= 0`` still
        make exactly one attempt.
    stale_time : float or None
        Default freshness window (seconds) for queries that don't pass one.
    """

    max_retry_call: int = DEFAULT_MAX_RETRY_CALL
    stale_time: float | None = None

    def __post_init__(self) -> None:
        if self.stale_time is not None and self.stale_time < 0:
            raise ReactiveModelsConfigError(f"stale_time must be >= 0 or None, got {self.stale_time}")

    @classmethod
    def from_env(cls, **overrides: Any) -> QueryConfig:
        """Create configuration from ``REACTIVE_MODELS_MAX_RETRY_CALL`` and ``REACTIVE_MODELS_STALE_TIME``."""
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        retry_env = env.get(f"{ENV_PREFIX}MAX_RETRY_CALL")
        if retry_env is not None and "max_retry_call" not in overrides:
            try:
                config_kwargs["max_retry_call"] = int(retry_env)
            except ValueError as exc:
                raise ReactiveModelsConfigError(
                    f"{ENV_PREFIX}MAX_RETRY_CALL must be an integer, got {retry_env!r}"
                ) from exc

        stale_env = env.get(f"{ENV_PREFIX}STALE_TIME")
        if stale_env is not None and "stale_time" not in overrides:
            config_kwargs["stale_time"] = _env_seconds(f"{ENV_PREFIX}STALE_TIME", stale_env)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
