"""Long-polling loop that feeds Telegram updates to a handler."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from models.errors import TransportDeliveryError
from services.telegram.client import TelegramClient

LOGGER = logging.getLogger(__name__)

UpdateHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class UpdatePoller:
    """Fetch updates with an advancing offset and dispatch each one as a task.

    Dispatched tasks are tracked so shutdown can wait for in-flight work
    without cancelling it.
    """

    def __init__(
        self,
        client: TelegramClient,
        handler: UpdateHandler,
        *,
        poll_timeout: int = 30,
        error_backoff: float = 5.0,
    ) -> None:
        self.client = client
        self.handler = handler
        self.poll_timeout = poll_timeout
        self.error_backoff = error_backoff
        self.offset: Optional[int] = None
        self.in_flight: Set[asyncio.Task] = set()
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        """Stop fetching new updates after the current poll returns."""
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run(self) -> None:
        """Poll until :meth:`stop` is called or the task is cancelled."""
        LOGGER.info("Update polling started")
        while not self.stopping:
            try:
                updates = await self.client.get_updates(self.offset, timeout=self.poll_timeout)
            except asyncio.CancelledError:
                break
            except TransportDeliveryError as exc:
                LOGGER.warning("Polling error, retrying in %.0fs: %s", self.error_backoff, exc)
                await self._backoff()
                continue
            for update in updates or []:
                self.offset = int(update.get("update_id", 0)) + 1
                if self.stopping:
                    break
                self.dispatch(update)
        LOGGER.info("Update polling stopped")

    def dispatch(self, update: Dict[str, Any]) -> asyncio.Task:
        """Run the handler for ``update`` in its own task."""
        task = asyncio.create_task(self.handler(update))
        self.in_flight.add(task)
        task.add_done_callback(self.in_flight.discard)
        return task

    async def wait_in_flight(self, timeout: float) -> None:
        """Wait up to ``timeout`` seconds for dispatched handlers to finish."""
        pending = set(self.in_flight)
        if not pending:
            return
        LOGGER.info("Waiting for %d in-flight update(s) to finish", len(pending))
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            LOGGER.warning("%d update handler(s) still running at shutdown", len(still_pending))

    async def _backoff(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.error_backoff)
        except asyncio.TimeoutError:
            pass
