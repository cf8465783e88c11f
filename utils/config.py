"""Load the bot configuration from the environment.

Values are read once at start-up (optionally from a ``.env`` file) into an
immutable :class:`Settings` that is passed to every service constructor.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

from dotenv import load_dotenv

from models.errors import ConfigurationError

REQUIRED_VARIABLES = ("BOT_TOKEN", "CHAT_IDS", "OCR_API_KEY", "ANSWER_API_KEY")
TRANSPORT_MODES = ("polling", "webhook")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration.

    Attributes:
        bot_token: Telegram bot credential.
        chat_ids: Allow-listed chat identities; messages from other chats are dropped.
        ocr_api_key: Credential for the text extraction service.
        answer_api_key: Credential for the answer service.
        ocr_enabled: When False, extraction returns a fixed sentinel.
        answer_enabled: When False, answering returns a fixed sentinel.
        image_quality: JPEG quality (1-100) for captured screenshots.
        image_max_width: Screenshots wider than this are scaled down.
        verbose_logging: Enables DEBUG logs and per-message logging.
        session_timeout_minutes: Idle age after which a session is purged.
    """

    bot_token: str
    chat_ids: FrozenSet[str]
    ocr_api_key: str
    answer_api_key: str
    ocr_model: str = "gpt-4o-mini"
    answer_model: str = "gpt-4o"
    ocr_enabled: bool = True
    answer_enabled: bool = True
    image_quality: int = 100
    image_max_width: int = 1280
    verbose_logging: bool = True
    session_timeout_minutes: float = 45
    sweep_interval_seconds: float = 300
    screenshots_dir: Path = Path("screenshots")
    startup_retries: int = 5
    startup_retry_delay: float = 5
    shutdown_grace_seconds: float = 30
    transport_mode: str = "polling"
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    http_host: str = "127.0.0.1"
    http_port: int = 8000

    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_minutes * 60

    def is_authorized(self, chat_id: str) -> bool:
        return chat_id in self.chat_ids

    def feature_flags(self) -> dict:
        """Return the flags that are worth logging at start-up."""
        return {
            "ocr_enabled": self.ocr_enabled,
            "answer_enabled": self.answer_enabled,
            "image_quality": self.image_quality,
            "image_max_width": self.image_max_width,
            "verbose_logging": self.verbose_logging,
            "session_timeout_minutes": self.session_timeout_minutes,
        }


def _parse_bool(name: str, raw: Optional[str], default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean flag (1/0, true/false), got {raw!r}")


def _parse_int(name: str, raw: Optional[str], default: int, *, minimum: int = 0, maximum: Optional[int] = None) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ConfigurationError(f"{name} must be {bounds}, got {value}")
    return value


def _parse_float(name: str, raw: Optional[str], default: float) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _parse_chat_ids(raw: str) -> FrozenSet[str]:
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def settings_from_mapping(env: Mapping[str, str]) -> Settings:
    """Build :class:`Settings` from an environment-like mapping.

    Raises:
        ConfigurationError: If a required variable is missing or a value is invalid.
    """
    missing = [name for name in REQUIRED_VARIABLES if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigurationError("Missing required environment variables: " + ", ".join(missing))

    chat_ids = _parse_chat_ids(env["CHAT_IDS"])
    if not chat_ids:
        raise ConfigurationError("CHAT_IDS must list at least one chat id")

    transport_mode = (env.get("TRANSPORT_MODE") or "polling").strip().lower()
    if transport_mode not in TRANSPORT_MODES:
        raise ConfigurationError(f"TRANSPORT_MODE must be one of {', '.join(TRANSPORT_MODES)}, got {transport_mode!r}")
    webhook_url = (env.get("WEBHOOK_URL") or "").strip() or None
    if transport_mode == "webhook" and not webhook_url:
        raise ConfigurationError("WEBHOOK_URL is required when TRANSPORT_MODE=webhook")

    return Settings(
        bot_token=env["BOT_TOKEN"].strip(),
        chat_ids=chat_ids,
        ocr_api_key=env["OCR_API_KEY"].strip(),
        answer_api_key=env["ANSWER_API_KEY"].strip(),
        ocr_model=(env.get("OCR_MODEL") or "gpt-4o-mini").strip(),
        answer_model=(env.get("ANSWER_MODEL") or "gpt-4o").strip(),
        ocr_enabled=_parse_bool("OCR_ENABLED", env.get("OCR_ENABLED"), True),
        answer_enabled=_parse_bool("ANSWER_ENABLED", env.get("ANSWER_ENABLED"), True),
        image_quality=_parse_int("IMAGE_QUALITY", env.get("IMAGE_QUALITY"), 100, minimum=1, maximum=100),
        image_max_width=_parse_int("IMAGE_MAX_WIDTH", env.get("IMAGE_MAX_WIDTH"), 1280, minimum=1),
        verbose_logging=_parse_bool("VERBOSE_LOGGING", env.get("VERBOSE_LOGGING"), True),
        session_timeout_minutes=_parse_float("SESSION_TIMEOUT_MINUTES", env.get("SESSION_TIMEOUT_MINUTES"), 45),
        sweep_interval_seconds=_parse_float("SWEEP_INTERVAL_SECONDS", env.get("SWEEP_INTERVAL_SECONDS"), 300),
        screenshots_dir=Path(env.get("SCREENSHOTS_DIR") or "screenshots").expanduser(),
        startup_retries=_parse_int("STARTUP_RETRIES", env.get("STARTUP_RETRIES"), 5, minimum=1),
        startup_retry_delay=_parse_float("STARTUP_RETRY_DELAY", env.get("STARTUP_RETRY_DELAY"), 5),
        shutdown_grace_seconds=_parse_float("SHUTDOWN_GRACE_SECONDS", env.get("SHUTDOWN_GRACE_SECONDS"), 30),
        transport_mode=transport_mode,
        webhook_url=webhook_url,
        webhook_secret=(env.get("WEBHOOK_SECRET") or "").strip() or None,
        http_host=(env.get("HTTP_HOST") or "127.0.0.1").strip(),
        http_port=_parse_int("HTTP_PORT", env.get("HTTP_PORT"), 8000, minimum=1, maximum=65535),
    )


def load_settings() -> Settings:
    """Load settings from the process environment, reading ``.env`` if present."""
    load_dotenv()
    return settings_from_mapping(os.environ)
