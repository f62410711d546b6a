"""Custom exception hierarchy for reactive_models."""

from __future__ import annotations


class ReactiveModelsError(Exception):
    """Base exception for all reactive_models errors."""


class ReactiveModelsConfigError(ReactiveModelsError):
    """Invalid or missing configuration."""


class VaultConfigError(ReactiveModelsConfigError):
    """Vault construction options are inconsistent.

    Raised for bad eviction settings, a malformed seed entry, or extension
    field names that are not identifiers or shadow a base entry field.
    """


class UnknownExtensionFieldError(ReactiveModelsError):
    """An extension field was written that the vault never declared."""

    def __init__(self, name: str, *, declared: frozenset[str] = frozenset()) -> None:
        self.name = name
        self.declared = declared
        known = ", ".join(sorted(declared)) or "none"
        super().__init__(f"Unknown extension field {name!r} (declared: {known})")


class VaultClosedError(ReactiveModelsError):
    """Operation attempted on a vault after :meth:`Vault.close`."""


class QueryTransportError(ReactiveModelsError):
    """HTTP-level failure while refreshing a query (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)
