import asyncio

import pytest

from hot_tokens.http import HTTPError, HttpClient, JsonRpcError


class _Response:
    def __init__(self, status, payload=None):
        self.status = status
        self._payload = payload

    async def json(self, content_type=None):
        return self._payload

    async def text(self):
        return "error body"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _Session:
    closed = False

    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self._responses.pop(0)


@pytest.fixture(autouse=True)
def _no_jitter(monkeypatch):
    monkeypatch.setattr(HttpClient, "_jitter", staticmethod(lambda: 0.0))


def test_server_error_retried_once():
    async def run() -> None:
        session = _Session([_Response(503), _Response(200, {"ok": True})])
        client = HttpClient(session=session)
        assert await client.get_json("https://api.example/x", timeout=2.0) == {"ok": True}
        assert len(session.calls) == 2
        assert session.calls[0][2]["timeout"].total == 2.0

    asyncio.run(run())


def test_rate_limited_twice_raises():
    async def run() -> None:
        session = _Session([_Response(429), _Response(429)])
        client = HttpClient(session=session)
        with pytest.raises(HTTPError) as info:
            await client.get_json("https://api.example/x")
        assert info.value.status == 429

    asyncio.run(run())


def test_client_error_not_retried():
    async def run() -> None:
        session = _Session([_Response(404)])
        client = HttpClient(session=session)
        with pytest.raises(HTTPError):
            await client.get_json("https://api.example/missing")
        assert len(session.calls) == 1

    asyncio.run(run())


def test_rpc_wraps_payload_and_unwraps_result():
    async def run() -> None:
        session = _Session([_Response(200, {"jsonrpc": "2.0", "id": "x", "result": {"value": 1}})])
        client = HttpClient(session=session)
        result = await client.rpc("https://rpc.example", "getAsset", {"id": "mint"})
        assert result == {"value": 1}
        method, url, kwargs = session.calls[0]
        assert method == "POST"
        assert kwargs["json"]["method"] == "getAsset"
        assert kwargs["json"]["params"] == {"id": "mint"}
        assert kwargs["json"]["id"].startswith("hot-tokens-")

    asyncio.run(run())


@pytest.mark.parametrize("payload", [{"error": {"code": -32602, "message": "bad"}}, ["not", "a", "dict"]])
def test_rpc_errors_raise(payload):
    async def run() -> None:
        client = HttpClient(session=_Session([_Response(200, payload)]))
        with pytest.raises(JsonRpcError):
            await client.rpc("https://rpc.example", "getAccountInfo", [])

    asyncio.run(run())


def test_close_leaves_injected_session_open():
    async def run() -> None:
        session = _Session([])
        client = HttpClient(session=session)
        await client.close()
        assert session.closed is False

    asyncio.run(run())
