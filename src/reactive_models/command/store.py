"""Single-slot observable store holding command params and a loading flag."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from reactive_models._observable import ChangeFeed, Observable


class CommandState(BaseModel):
    """Current command params plus whether the command is running."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    is_loading: bool = False
    params: dict[str, Any] = Field(default_factory=dict)


class CommandStore:
    """Observable :class:`CommandState` with explicit setters.

    ``reset`` restores the params the store was created with.
    """

    def __init__(self, initial_params: Mapping[str, Any] | None = None) -> None:
        self._initial_params: dict[str, Any] = copy.deepcopy(dict(initial_params or {}))
        self._feed: ChangeFeed[CommandState] = ChangeFeed(self._initial_state())

    def _initial_state(self) -> CommandState:
        return CommandState(params=copy.deepcopy(self._initial_params))

    @property
    def state(self) -> CommandState:
        return self._feed.value

    @property
    def params(self) -> dict[str, Any]:
        return dict(self._feed.value.params)

    def changes(self) -> Observable[CommandState]:
        return self._feed.as_observable()

    def set_is_loading(self, is_loading: bool) -> None:
        self._feed.next(self.state.model_copy(update={"is_loading": is_loading}))

    def update_params(self, updated: Mapping[str, Any]) -> None:
        """Shallow-merge *updated* into the current params."""
        merged = {**self.state.params, **updated}
        self._feed.next(self.state.model_copy(update={"params": merged}))

    def reset(self) -> None:
        self._feed.next(self._initial_state())
