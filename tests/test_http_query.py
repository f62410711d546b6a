from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest

from reactive_models.config import QueryConfig, VaultConfig
from reactive_models.exceptions import QueryTransportError
from reactive_models.query.http import JsonQueryModel, _query_string_params
from reactive_models.vault.store import Vault


@dataclass
class _FakeResponse:
    status: int
    body: str

    async def text(self) -> str:
        return self.body

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


@dataclass
class _FakeSession:
    responses: list[_FakeResponse | Exception]
    requests: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    def get(self, url: str, *, params: dict[str, str], headers: dict[str, str]) -> _FakeResponse:
        self.requests.append({"url": url, "params": params, "headers": headers})
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


def _model(session: _FakeSession, *, max_retry_call: int = 1) -> JsonQueryModel:
    return JsonQueryModel(
        "https://api.example.com/items",
        session=session,  # type: ignore[arg-type]
        headers={"x-token": "t"},
        vault=Vault(VaultConfig(cache_time=None)),
        config=QueryConfig(max_retry_call=max_retry_call),
    )


def test_query_string_params_flattening() -> None:
    assert _query_string_params(None) == {}
    assert _query_string_params({"page": 2, "active": True, "q": "x", "skip": None, "ids": [1, 2]}) == {
        "page": "2",
        "active": "true",
        "q": "x",
        "ids": "[1,2]",
    }
    with pytest.raises(TypeError):
        _query_string_params(["not", "a", "mapping"])


@pytest.mark.asyncio
async def test_successful_fetch_is_cached() -> None:
    session = _FakeSession([_FakeResponse(200, '{"items": [1, 2]}')])
    model = _model(session)

    loaded = await model.query({"page": 1}).first(lambda r: r.is_fetched)

    assert loaded.data == {"items": [1, 2]}
    assert session.requests[0]["url"] == "https://api.example.com/items"
    assert session.requests[0]["params"] == {"page": "1"}
    assert session.requests[0]["headers"]["x-token"] == "t"
    assert session.requests[0]["headers"]["accept"] == "application/json"


@pytest.mark.asyncio
async def test_http_error_status_lands_in_entry() -> None:
    session = _FakeSession([_FakeResponse(503, "unavailable")])
    model = _model(session)

    failed = await model.query().first(lambda r: r.error is not None)

    assert isinstance(failed.error, QueryTransportError)
    assert failed.error.status_code == 503
    assert failed.error.url == "https://api.example.com/items"


@pytest.mark.asyncio
async def test_invalid_json_is_reported() -> None:
    session = _FakeSession([_FakeResponse(200, "<html>")])
    model = _model(session)

    failed = await model.query().first(lambda r: r.error is not None)

    assert isinstance(failed.error, QueryTransportError)
    assert failed.error.status_code == 200
    assert "Invalid JSON" in str(failed.error)


@pytest.mark.asyncio
async def test_client_errors_are_wrapped() -> None:
    cause = aiohttp.ClientConnectionError("connection reset")
    session = _FakeSession([cause])
    model = _model(session)

    failed = await model.query().first(lambda r: r.error is not None)

    assert isinstance(failed.error, QueryTransportError)
    assert failed.error.status_code is None
    assert failed.error.__cause__ is cause


@pytest.mark.asyncio
async def test_transport_failure_is_retried() -> None:
    session = _FakeSession([_FakeResponse(500, "oops"), _FakeResponse(200, "[]")])
    model = _model(session, max_retry_call=2)

    loaded = await model.query().first(lambda r: r.is_fetched)

    assert loaded.data == []
    assert loaded.error is None
    assert len(session.requests) == 2


@pytest.mark.asyncio
async def test_non_mapping_params_fail_the_refresh() -> None:
    session = _FakeSession([])
    model = _model(session)

    failed = await model.query(["a"]).first(lambda r: r.error is not None)

    assert isinstance(failed.error, TypeError)
    assert session.requests == []


@pytest.mark.asyncio
async def test_external_session_is_left_open() -> None:
    session = _FakeSession([])

    async with _model(session) as model:
        assert model.url == "https://api.example.com/items"

    assert session.closed is False
