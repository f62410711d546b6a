"""reactive_models - Keyed, self-refreshing async data cache with observable change feeds."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("reactive-models")
except PackageNotFoundError:
    __version__ = "0+local"
from reactive_models._hashing import NO_PARAMS_KEY, canonical_key
from reactive_models._observable import ChangeFeed, Observable, Subscription
from reactive_models._retry import call_with_retry
from reactive_models.command.model import CommandModel, CommandResponse
from reactive_models.command.store import CommandState, CommandStore
from reactive_models.config import CacheInvalidationStrategy, QueryConfig, VaultConfig, VaultSeed
from reactive_models.exceptions import (
    QueryTransportError,
    ReactiveModelsConfigError,
    ReactiveModelsError,
    UnknownExtensionFieldError,
    VaultClosedError,
    VaultConfigError,
)
from reactive_models.query.http import JsonQueryModel
from reactive_models.query.model import QueryModel, StoreHandler
from reactive_models.vault.entry import CacheEntry, QueryResponse, is_same_base_data
from reactive_models.vault.store import Vault

__all__ = [
    "__version__",
    "NO_PARAMS_KEY",
    "CacheEntry",
    "CacheInvalidationStrategy",
    "ChangeFeed",
    "CommandModel",
    "CommandResponse",
    "CommandState",
    "CommandStore",
    "JsonQueryModel",
    "Observable",
    "QueryConfig",
    "QueryModel",
    "QueryResponse",
    "QueryTransportError",
    "ReactiveModelsConfigError",
    "ReactiveModelsError",
    "StoreHandler",
    "Subscription",
    "UnknownExtensionFieldError",
    "Vault",
    "VaultClosedError",
    "VaultConfig",
    "VaultConfigError",
    "VaultSeed",
    "call_with_retry",
    "canonical_key",
    "is_same_base_data",
]
