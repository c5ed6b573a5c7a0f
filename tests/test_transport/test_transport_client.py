import json

import httpx
import pytest

from parley.config import TransportConfig
from parley.exceptions import TransportError
from parley.transport import TransportClient


BASE = "http://service.test/api"


def make_client(handler, sleeps: list[float] | None = None, **config_overrides) -> TransportClient:
    recorded = sleeps if sleeps is not None else []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    config = TransportConfig(base_url=BASE, **config_overrides)
    return TransportClient(
        config,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=fake_sleep,
    )


def chat_payload(text: str, **extra) -> dict:
    return {
        "response": text,
        "session_id": "srv",
        "mode": "code",
        "timestamp": "2026-01-01T00:00:00Z",
        **extra,
    }


@pytest.mark.asyncio
async def test_send_turn_posts_request_body_and_parses_usage():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path == "/api/chat"
        return httpx.Response(
            200,
            json=chat_payload(
                "hi there",
                usage={"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
            ),
        )

    client = make_client(handler)
    result = await client.send_turn("hello", "general")

    assert result.text == "hi there"
    assert result.usage is not None
    assert result.usage.total_tokens == 5
    assert seen == [
        {
            "message": "hello",
            "session_id": client.session_id,
            "mode": "general",
            "use_web_search": False,
            "fact_check": False,
        }
    ]


@pytest.mark.asyncio
async def test_session_id_is_stable_across_requests():
    session_ids: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        session_ids.append(json.loads(request.content)["session_id"])
        return httpx.Response(200, json=chat_payload("ok"))

    client = make_client(handler)
    await client.send_turn("one")
    await client.send_turn("two", "general")

    assert session_ids[0] == session_ids[1] == client.session_id
    assert client.session_id.startswith("parley-")


@pytest.mark.asyncio
async def test_send_turn_uses_session_default_mode():
    modes: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        modes.append(json.loads(request.content)["mode"])
        return httpx.Response(200, json=chat_payload("ok"))

    client = make_client(handler)
    await client.send_turn("hello")

    assert modes == ["code"]


@pytest.mark.asyncio
async def test_send_turn_retries_transient_status_then_succeeds():
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=chat_payload("recovered"))

    client = make_client(handler, sleeps=sleeps, max_attempts=3)
    result = await client.send_turn("hello")

    assert result.text == "recovered"
    assert calls["count"] == 3
    assert len(sleeps) == 2
    assert sleeps[1] > sleeps[0]


@pytest.mark.asyncio
async def test_send_turn_raises_transport_error_after_budget_exhausted():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, max_attempts=4)

    with pytest.raises(TransportError) as exc_info:
        await client.send_turn("hello")

    assert calls["count"] == 4
    assert isinstance(exc_info.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_send_turn_does_not_retry_client_errors():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(400)

    client = make_client(handler, max_attempts=5)

    with pytest.raises(TransportError) as exc_info:
        await client.send_turn("hello")

    assert calls["count"] == 1
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_send_turn_wraps_undecodable_success_body():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(
            200,
            content=b'{"response": "\xff\xfe"}',
            headers={"Content-Type": "application/json"},
        )

    client = make_client(handler, max_attempts=3)

    with pytest.raises(TransportError, match="Failed to send message"):
        await client.send_turn("hello")

    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_stream_turn_yields_chunks_and_skips_malformed_lines():
    body = "\n".join(
        [
            ": comment",
            'data: {"chunk": "Hel", "done": false}',
            "data: {broken",
            'data: {"chunk": "lo", "done": false}',
            'data: {"chunk": "!", "done": true}',
            'data: {"chunk": "ignored", "done": false}',
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/chat/stream"
        return httpx.Response(200, text=body)

    client = make_client(handler)
    chunks = [chunk async for chunk in client.stream_turn("hello")]

    assert chunks == ["Hel", "lo", "!"]


@pytest.mark.asyncio
async def test_stream_turn_stops_at_done_sentinel():
    body = 'data: {"chunk": "a"}\ndata: [DONE]\ndata: {"chunk": "b"}\n'

    client = make_client(lambda request: httpx.Response(200, text=body))
    chunks = [chunk async for chunk in client.stream_turn("hello")]

    assert chunks == ["a"]


@pytest.mark.asyncio
async def test_stream_turn_falls_back_to_send_turn_with_one_fragment():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/chat/stream"):
            return httpx.Response(502)
        return httpx.Response(200, json=chat_payload("full answer"))

    client = make_client(handler)
    chunks = [chunk async for chunk in client.stream_turn("hello")]

    assert chunks == ["full answer"]


@pytest.mark.asyncio
async def test_stream_turn_falls_back_when_connection_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/chat/stream"):
            raise httpx.ConnectError("no route", request=request)
        return httpx.Response(200, json=chat_payload("non-streamed"))

    client = make_client(handler)
    chunks = [chunk async for chunk in client.stream_turn("hello")]

    assert chunks == ["non-streamed"]


@pytest.mark.asyncio
async def test_stream_turn_raises_when_fallback_also_fails():
    client = make_client(lambda request: httpx.Response(500), max_attempts=2)

    with pytest.raises(TransportError):
        [chunk async for chunk in client.stream_turn("hello")]


@pytest.mark.asyncio
async def test_pass_through_endpoints():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/health":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/chat/sessions" and request.method == "GET":
            return httpx.Response(200, json=[{"id": "a"}])
        if path == "/api/chat/sessions/a" and request.method == "DELETE":
            return httpx.Response(204)
        if path == "/api/knowledge/search":
            return httpx.Response(200, json={"q": request.url.params["q"]})
        if path == "/api/knowledge/domains":
            return httpx.Response(200, json=["code"])
        return httpx.Response(404)

    client = make_client(handler)

    assert await client.health_check() == {"status": "ok"}
    assert await client.get_sessions() == [{"id": "a"}]
    assert await client.delete_session("a") is None
    assert await client.search_knowledge("go servers") == {"q": "go servers"}
    assert await client.get_knowledge_domains() == ["code"]
    with pytest.raises(TransportError) as exc_info:
        await client.get_knowledge_stats()
    assert exc_info.value.status_code == 404
