"""Start-up, background maintenance, and shutdown for the bot."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from models.errors import TransportConnectError, TransportDeliveryError
from services.session_store import SessionStore
from services.telegram.client import TelegramClient
from services.telegram.poller import UpdateHandler, UpdatePoller
from utils.config import Settings

LOGGER = logging.getLogger(__name__)


class LifecycleSupervisor:
    """Connect the transport, run the expiry sweep, and stop cleanly.

    Args:
        settings: Runtime settings (retry policy, sweep interval, transport mode).
        store: Session store swept on every interval.
        transport: Telegram client used for connectivity checks and polling.
        handler: Coroutine function invoked with each raw update.
    """

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        transport: TelegramClient,
        handler: UpdateHandler,
        *,
        poller: Optional[UpdatePoller] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.transport = transport
        self.poller = poller or UpdatePoller(transport, handler)
        self.bot_info: Dict[str, Any] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._accepting = False

    @property
    def accepting(self) -> bool:
        return self._accepting

    async def connect(self) -> Dict[str, Any]:
        """Reach the transport, retrying with a fixed delay.

        Raises:
            TransportConnectError: After ``startup_retries`` failed attempts.
        """
        retries = self.settings.startup_retries
        delay = self.settings.startup_retry_delay
        for attempt in range(1, retries + 1):
            try:
                self.bot_info = await self.transport.get_me() or {}
                return self.bot_info
            except TransportDeliveryError as exc:
                LOGGER.error("Failed to start bot (attempt %d/%d): %s", attempt, retries, exc)
                if attempt >= retries:
                    LOGGER.error("Max retries reached. Could not start the bot.")
                    raise TransportConnectError(f"Could not reach the chat transport after {retries} attempts") from exc
                LOGGER.info("Retrying in %.0f seconds...", delay)
                await asyncio.sleep(delay)
        raise TransportConnectError("No connection attempts were made")

    async def start(self) -> None:
        """Connect, begin receiving updates, and schedule the expiry sweep."""
        await self.connect()
        if self.settings.transport_mode == "webhook":
            await self.transport.set_webhook(self.settings.webhook_url, self.settings.webhook_secret)
            LOGGER.info("Webhook registered at %s", self.settings.webhook_url)
        else:
            await self.transport.delete_webhook()
            self._poll_task = asyncio.create_task(self.poller.run())
        self._accepting = True
        self._sweep_task = asyncio.create_task(self.run_sweeps())
        LOGGER.info(
            "Bot %s started successfully with feature flags: %s",
            self.bot_info.get("username", "?"),
            self.settings.feature_flags(),
        )

    def dispatch(self, update: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Hand an update received outside the poller (webhook) to the handler."""
        if not self._accepting:
            LOGGER.info("Dropping update received while not accepting events")
            return None
        return self.poller.dispatch(update)

    async def sweep_once(self) -> int:
        released = await self.store.sweep_expired()
        if released:
            LOGGER.info("Expiry sweep released %d screenshot(s)", len(released))
        return len(released)

    async def run_sweeps(self) -> None:
        """Sweep expired sessions every interval until cancelled."""
        interval = self.settings.sweep_interval_seconds
        while True:
            try:
                await asyncio.sleep(interval)
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception:
                # keep the loop alive; the next tick retries
                LOGGER.exception("Session sweep failed")

    async def stop(self) -> None:
        """Stop taking new events, then let in-flight handlers finish (best effort)."""
        LOGGER.info("Shutting down bot...")
        self._accepting = False
        self.poller.stop()
        for task in (self._poll_task, self._sweep_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._poll_task = None
        self._sweep_task = None
        await self.poller.wait_in_flight(self.settings.shutdown_grace_seconds)
