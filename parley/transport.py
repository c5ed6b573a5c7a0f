"""HTTP transport to the remote reasoning service."""

import asyncio
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator
from urllib.parse import quote

import httpx

from parley.config import ResponseMode, TransportConfig, get_config
from parley.exceptions import ProtocolError, TransportError
from parley.logging import get_logger
from parley.retry import RetryPolicy, SleepFn, retry_with_backoff

log = get_logger(__name__)

STREAM_DATA_PREFIX = "data: "
STREAM_DONE_SENTINEL = "[DONE]"
TRANSIENT_STATUS_CODES = {408, 429}


def generate_session_id() -> str:
    """Return a process-scoped random session token."""
    return f"parley-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


@dataclass(frozen=True)
class Session:
    """Session attached to every outbound request."""

    id: str
    mode: ResponseMode = "code"


@dataclass
class Usage:
    """Token usage reported by the service."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, data: Any) -> "Usage | None":
        if not isinstance(data, dict):
            return None
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0) or 0),
            completion_tokens=int(data.get("completion_tokens", 0) or 0),
            total_tokens=int(data.get("total_tokens", 0) or 0),
        )


@dataclass
class ChatResponse:
    """Response from ``POST /chat``."""

    text: str
    session_id: str = ""
    mode: str = ""
    timestamp: str = ""
    usage: Usage | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ChatResponse":
        return cls(
            text=str(data.get("response", "") or ""),
            session_id=str(data.get("session_id", "") or ""),
            mode=str(data.get("mode", "") or ""),
            timestamp=str(data.get("timestamp", "") or ""),
            usage=Usage.from_payload(data.get("usage")),
        )


@dataclass
class StreamFragment:
    """One decoded stream line."""

    text: str = ""
    terminal: bool = False


@dataclass
class _StreamState:
    fragments: int = 0
    chars: int = 0
    skipped: int = 0


def parse_stream_line(line: str) -> StreamFragment | None:
    """Decode one line of a ``/chat/stream`` body.

    Returns ``None`` for lines that carry no payload, a terminal fragment for
    ``[DONE]`` or an empty payload, and otherwise the decoded ``chunk``/``done``
    record.

    Raises:
        ProtocolError: if the payload is not a JSON object
    """
    if not line.startswith(STREAM_DATA_PREFIX):
        return None
    payload = line[len(STREAM_DATA_PREFIX):].strip()
    if payload == STREAM_DONE_SENTINEL or payload == "":
        return StreamFragment(text="", terminal=True)
    try:
        record = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolError(line, str(e)) from e
    if not isinstance(record, dict):
        raise ProtocolError(line, "payload is not an object")
    chunk = record.get("chunk")
    return StreamFragment(
        text=chunk if isinstance(chunk, str) else "",
        terminal=bool(record.get("done")),
    )


def is_transient_error(error: Exception) -> bool:
    """Whether a failed request is worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, TransportError):
        status = error.status_code
        if status is None:
            return isinstance(error.cause, httpx.TransportError)
        return status in TRANSIENT_STATUS_CODES or status >= 500
    return False


class TransportClient:
    """Sends and streams turns to the remote service.

    One session token is generated at construction and attached to every
    request for the lifetime of the client.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        default_mode: ResponseMode = "code",
        session_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.config = config or get_config().transport
        self.base_url = self.config.base_url.rstrip("/")
        self.session = Session(id=session_id or generate_session_id(), mode=default_mode)
        self.retry_policy = RetryPolicy.from_config(self.config)
        self._sleep = sleep
        self.client = http_client or httpx.AsyncClient(
            timeout=self.config.timeout,
            follow_redirects=True,
        )

    @property
    def session_id(self) -> str:
        return self.session.id

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    def _build_request(self, message: str, mode: ResponseMode | None) -> dict[str, Any]:
        return {
            "message": message,
            "session_id": self.session.id,
            "mode": mode or self.session.mode,
            "use_web_search": False,
            "fact_check": False,
        }

    async def _post_chat(self, body: dict[str, Any]) -> ChatResponse:
        try:
            response = await self.client.post(
                self._url("/chat"),
                json=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}", cause=e) from e

        if not response.is_success:
            raise TransportError(
                f"API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Response decode error: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise TransportError("Response body is not an object")
        return ChatResponse.from_payload(data)

    async def send_turn(self, message: str, mode: ResponseMode | None = None) -> ChatResponse:
        """Send one request/response turn with retry.

        Raises:
            TransportError: once the retry budget is exhausted or a
                non-transient failure occurs
        """
        body = self._build_request(message, mode)
        log.debug("Sending turn", session_id=self.session.id, mode=body["mode"], chars=len(message))
        try:
            result = await retry_with_backoff(
                lambda: self._post_chat(body),
                policy=self.retry_policy,
                should_retry=is_transient_error,
                sleep=self._sleep,
            )
        except TransportError as e:
            raise TransportError(
                f"Failed to send message: {e}",
                status_code=e.status_code,
                cause=e.cause or e,
            ) from e
        if result.usage is not None:
            log.debug("Turn usage", total_tokens=result.usage.total_tokens)
        return result

    async def _iter_stream(self, response: httpx.Response) -> AsyncIterator[str]:
        state = _StreamState()
        async for line in response.aiter_lines():
            try:
                fragment = parse_stream_line(line)
            except ProtocolError as e:
                log.warning("Failed to parse stream data", line=e.line, error=str(e))
                state.skipped += 1
                continue
            if fragment is None:
                continue
            if fragment.text:
                state.fragments += 1
                state.chars += len(fragment.text)
                yield fragment.text
            if fragment.terminal:
                break
        log.debug(
            "Stream finished",
            fragments=state.fragments,
            chars=state.chars,
            skipped=state.skipped,
        )

    async def stream_turn(self, message: str, mode: ResponseMode | None = None) -> AsyncIterator[str]:
        """Stream a turn as text fragments.

        If the stream cannot be opened or fails before its first fragment, the
        turn is re-sent through :meth:`send_turn` and its full text is yielded
        as a single fragment.
        """
        body = self._build_request(message, mode)
        produced = False
        try:
            async with self.client.stream(
                "POST",
                self._url("/chat/stream"),
                json=body,
                headers={"Content-Type": "application/json"},
            ) as response:
                if not response.is_success:
                    raise TransportError(
                        f"API error: {response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                async for chunk in self._iter_stream(response):
                    produced = True
                    yield chunk
            return
        except (httpx.HTTPError, httpx.StreamError, TransportError) as e:
            if produced:
                raise TransportError(f"Stream interrupted: {e}", cause=e) from e
            log.warning("Streaming failed, falling back to regular API", error=str(e))

        result = await self.send_turn(message, mode)
        yield result.text

    async def _request_json(self, method: str, endpoint: str, action: str) -> Any:
        try:
            response = await self.client.request(
                method,
                self._url(endpoint),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to {action}: {e}", cause=e) from e
        if not response.is_success:
            raise TransportError(
                f"Failed to {action}: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Failed to {action}: {e}", cause=e) from e

    async def health_check(self) -> Any:
        return await self._request_json("GET", "/health", "check health")

    async def get_sessions(self) -> list[Any]:
        return await self._request_json("GET", "/chat/sessions", "get sessions") or []

    async def get_session(self, session_id: str) -> Any:
        return await self._request_json(
            "GET", f"/chat/sessions/{quote(session_id, safe='')}", "get session"
        )

    async def delete_session(self, session_id: str) -> None:
        await self._request_json(
            "DELETE", f"/chat/sessions/{quote(session_id, safe='')}", "delete session"
        )

    async def search_knowledge(self, query: str) -> Any:
        return await self._request_json(
            "GET", f"/knowledge/search?q={quote(query, safe='')}", "search knowledge"
        )

    async def get_knowledge_domains(self) -> list[Any]:
        return await self._request_json("GET", "/knowledge/domains", "get knowledge domains") or []

    async def get_knowledge_stats(self) -> Any:
        return await self._request_json("GET", "/knowledge/stats", "get knowledge stats")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
