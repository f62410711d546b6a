"""Ready-made query model that refreshes from a JSON HTTP endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from reactive_models._constants import USER_AGENT
from reactive_models.config import QueryConfig
from reactive_models.exceptions import QueryTransportError
from reactive_models.query.model import QueryModel
from reactive_models.vault.store import Vault

_logger = logging.getLogger(__name__)


def _query_string_params(params: Any) -> dict[str, str]:
    """Flatten query params into ``str`` values aiohttp accepts."""
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise TypeError(f"JsonQueryModel params must be a mapping or None, got {type(params).__name__}")
    flattened: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            flattened[str(key)] = "true" if value else "false"
        elif isinstance(value, (str, int, float)):
            flattened[str(key)] = str(value)
        else:
            flattened[str(key)] = json.dumps(value, separators=(",", ":"))
    return flattened


class JsonQueryModel(QueryModel[Any]):
    """GET *url* with the query params and cache the decoded JSON body.

    Usage::

        async with JsonQueryModel("https://api.example.com/items") as items:
            first = await items.query({"page": 1}).first(lambda r: r.is_fetched)

    Parameters
    ----------
    url : str
        Endpoint to fetch.
    session : aiohttp.ClientSession or None
        Shared HTTP session.  When omitted one is created lazily and closed
        in :meth:`aclose`.
    headers : Mapping[str, str] or None
        Extra request headers.
    vault, config
        Forwarded to :class:`QueryModel`.
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        headers: Mapping[str, str] | None = None,
        vault: Vault[Any] | None = None,
        config: QueryConfig | None = None,
    ) -> None:
        super().__init__(vault, config=config)
        self._url = url
        self._external_session = session is not None
        self._http_session = session
        self._headers: dict[str, str] = {"accept": "application/json", "user-agent": USER_AGENT}
        if headers:
            self._headers.update(headers)

    @property
    def url(self) -> str:
        return self._url

    async def aclose(self) -> None:
        await super().aclose()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    async def refresh(self, params: Any) -> Any:
        session = self._require_session()
        query_params = _query_string_params(params)

        _logger.debug("GET %s params=%s", self._url, query_params)

        try:
            async with session.get(self._url, params=query_params, headers=self._headers) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise QueryTransportError(
                        f"HTTP {resp.status} from {self._url}: {text[:200]}",
                        status_code=resp.status,
                        url=self._url,
                    )
        except QueryTransportError:
            raise
        except aiohttp.ClientError as exc:
            raise QueryTransportError(f"Request to {self._url} failed: {exc}", url=self._url) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise QueryTransportError(
                f"Invalid JSON from {self._url}: {text[:200]}",
                status_code=200,
                url=self._url,
            ) from exc
