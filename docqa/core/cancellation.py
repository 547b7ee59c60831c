"""
Cancellation signal threaded through search and embedding calls.

Tools may declare a parameter annotated with CancellationToken; the tool
registry hides it from the schema and supplies a token at execution time.
"""

import asyncio


class CancellationToken:
    """Cooperative cancellation flag backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @classmethod
    def none(cls) -> "CancellationToken":
        """A token that is never cancelled."""
        return cls()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()
