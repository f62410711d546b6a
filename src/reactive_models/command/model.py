"""Base class for commands (mutations) backed by a :class:`CommandStore`."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from reactive_models._observable import Observable
from reactive_models.command.store import CommandState, CommandStore

_logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True, slots=True)
class CommandResponse:
    """What :meth:`CommandModel.subscribe_to_params` emits."""

    params: dict[str, Any]
    is_loading: bool


class CommandModel(ABC, Generic[R]):
    """Holds the params of a pending mutation and runs it.

    Subclasses implement :meth:`mutate` and may override
    :meth:`initial_params`.  Pass *store* to share state between models;
    otherwise each instance gets its own.
    """

    def __init__(self, store: CommandStore | None = None) -> None:
        self._store = store if store is not None else CommandStore(self.initial_params())

    def initial_params(self) -> dict[str, Any]:
        """Params a fresh store starts from (and ``reset_store`` returns to)."""
        return {}

    @abstractmethod
    async def mutate(self, *args: Any, **kwargs: Any) -> R:
        """Run the command."""

    @property
    def store(self) -> CommandStore:
        return self._store

    def subscribe_to_params(self) -> Observable[CommandResponse]:
        def _to_response(state: CommandState) -> CommandResponse:
            return CommandResponse(params=dict(state.params), is_loading=state.is_loading)

        return self._store.changes().map(_to_response)

    def get_param(self, name: str) -> Any | None:
        return self._store.params.get(name)

    def update_params(self, params: Mapping[str, Any]) -> None:
        self._store.update_params(params)

    def update_is_loading(self, is_loading: bool) -> None:
        self._store.set_is_loading(is_loading)

    def reset_store(self) -> None:
        self._store.reset()

    @property
    def params(self) -> dict[str, Any]:
        return self._store.params

    @property
    def state(self) -> CommandState:
        return self._store.state

    async def run(self, *args: Any, **kwargs: Any) -> R:
        """Call :meth:`mutate` with ``is_loading`` set for its duration."""
        self.update_is_loading(True)
        try:
            return await self.mutate(*args, **kwargs)
        except Exception:
            _logger.debug("%s.mutate failed", type(self).__name__, exc_info=True)
            raise
        finally:
            self.update_is_loading(False)
