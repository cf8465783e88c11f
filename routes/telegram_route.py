"""Webhook endpoint receiving Telegram updates."""

import hmac
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request

router = APIRouter(prefix="/telegram")


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    payload: Dict[str, Any],
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    """Accept one update and hand it to the supervisor without waiting for it."""
    settings = request.app.state.settings
    expected = settings.webhook_secret
    if expected and not hmac.compare_digest(x_telegram_bot_api_secret_token or "", expected):
        raise HTTPException(status_code=403, detail="Invalid webhook secret")

    supervisor = getattr(request.app.state, "supervisor", None)
    if supervisor is None:
        raise HTTPException(status_code=503, detail="Bot is not running")
    if "update_id" not in payload:
        raise HTTPException(status_code=400, detail="Payload is not a Telegram update")

    task = supervisor.dispatch(payload)
    return {"ok": True, "accepted": task is not None}
