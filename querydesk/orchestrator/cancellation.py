"""Cooperative cancellation for one orchestration run."""

import asyncio


class CancellationToken:
    """Flag set by the transport when the client goes away.

    The loop checks it at the top of every step; the watcher that sets it
    lives with the transport (see api.routes.chat).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
