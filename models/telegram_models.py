"""Pydantic models for the subset of the Telegram Bot API payloads we consume."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.session_models import IncomingMessage


class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[TelegramMessage] = None

    def to_incoming(self) -> Optional[IncomingMessage]:
        """Return the text message carried by this update, if any."""
        message = self.message
        if message is None or message.text is None:
            return None
        user = message.from_user
        user_id = str(user.id) if user else str(message.chat.id)
        username = (user.username if user else None) or "unknown"
        return IncomingMessage(
            chat_id=str(message.chat.id),
            user_id=user_id,
            username=username,
            text=message.text,
        )
