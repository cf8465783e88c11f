"""Async Telegram Bot API client built on httpx.

Only the handful of methods the bot needs are wrapped. Every call returns the
decoded ``result`` payload or raises :class:`TransportDeliveryError`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import httpx

from models.errors import TransportDeliveryError

LOGGER = logging.getLogger(__name__)

API_BASE_URL = "https://api.telegram.org"
# Telegram rejects longer text messages
MAX_MESSAGE_LENGTH = 4096


def split_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split ``text`` into chunks Telegram will accept, preferring line breaks."""
    if len(text) <= limit:
        return [text]
    chunks: List[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        chunks.append(remaining)
    return chunks


class TelegramClient:
    """Thin async wrapper over the Telegram Bot HTTP API.

    Args:
        token: Bot credential.
        http_client: Optional pre-built ``httpx.AsyncClient`` (used by tests).
        base_url: API root, overridable for local Bot API servers.
        timeout: Default request timeout in seconds.
    """

    def __init__(
        self,
        token: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = API_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        if not token:
            raise ValueError("Bot token is required.")
        self._endpoint = f"{base_url.rstrip('/')}/bot{token}"
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def get_me(self) -> Dict[str, Any]:
        return await self._call("getMe")

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> List[Dict[str, Any]]:
        """Long-poll for updates newer than ``offset``."""
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        # leave headroom over the server-side long-poll timeout
        return await self._call("getUpdates", json=payload, timeout=timeout + 10)

    async def send_message(self, chat_id: str, text: str) -> Dict[str, Any]:
        """Send ``text``, splitting it across messages when too long; returns the last message."""
        result: Dict[str, Any] = {}
        for chunk in split_text(text or " "):
            result = await self._call("sendMessage", json={"chat_id": chat_id, "text": chunk})
        return result

    async def send_photo(self, chat_id: str, path: Path, caption: Optional[str] = None) -> Dict[str, Any]:
        return await self._send_file("sendPhoto", "photo", chat_id, Path(path), caption)

    async def send_document(self, chat_id: str, path: Path, caption: Optional[str] = None) -> Dict[str, Any]:
        return await self._send_file("sendDocument", "document", chat_id, Path(path), caption)

    async def delete_message(self, chat_id: str, message_id: int) -> bool:
        return bool(await self._call("deleteMessage", json={"chat_id": chat_id, "message_id": message_id}))

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> bool:
        payload: Dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        return bool(await self._call("setWebhook", json=payload))

    async def delete_webhook(self) -> bool:
        return bool(await self._call("deleteWebhook", json={"drop_pending_updates": False}))

    async def _send_file(self, method: str, field: str, chat_id: str, path: Path, caption: Optional[str]) -> Dict[str, Any]:
        try:
            async with aiofiles.open(path, "rb") as fh:
                content = await fh.read()
        except OSError as exc:
            raise TransportDeliveryError(f"Cannot read {path.name} for {method}: {exc}") from exc
        data: Dict[str, Any] = {"chat_id": chat_id}
        if caption:
            data["caption"] = caption
        files = {field: (path.name, content, "image/jpeg")}
        return await self._call(method, data=data, files=files)

    async def _call(self, method: str, *, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        url = f"{self._endpoint}/{method}"
        request_kwargs = dict(kwargs)
        if timeout is not None:
            request_kwargs["timeout"] = timeout
        try:
            response = await self._http.post(url, **request_kwargs)
        except httpx.TransportError as exc:
            LOGGER.warning("Telegram %s network error: %s", method, exc)
            raise TransportDeliveryError(f"{method} failed: {exc}", transient=True) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportDeliveryError(
                f"{method} returned a non-JSON response (HTTP {response.status_code})",
                transient=response.status_code >= 500,
            ) from exc

        if not body.get("ok"):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise TransportDeliveryError(
                f"{method} failed: {description}",
                transient=response.status_code >= 500 or response.status_code == 429,
            )
        return body.get("result")
