"""Cooperative cancellation token threaded through every suspension point."""

import asyncio


class CancellationToken:
    """Wraps an ``asyncio.Event`` that callers set to stop an in-flight turn.

    The pipeline checks ``cancelled`` before emitting each fragment and before
    each tool invocation. Tools that accept an abort event receive ``event``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def event(self) -> asyncio.Event:
        return self._event

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


def is_cancelled(token: CancellationToken | None) -> bool:
    """Return True when a token is present and set."""
    return token is not None and token.cancelled
