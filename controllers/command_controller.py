"""Interpret inbound chat commands and drive capture, extraction and batching."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from models.errors import AnswerFailure, CaptureFailure, ExtractionFailure, TransportDeliveryError
from models.session_models import SLOT_COUNT, CaptureSession, IncomingMessage
from models.telegram_models import TelegramUpdate
from services.batch_pipeline import BatchPipeline, PipelineObserver
from services.capture.artifacts import release_artifact
from services.capture.screen_capture import ScreenCaptureService
from services.openai.answer_service import FAILED_ANSWER_TEXT, AnswerService
from services.openai.text_extractor import TextExtractionService
from services.session_store import SessionStore
from services.telegram.client import TelegramClient
from utils.config import Settings

LOGGER = logging.getLogger(__name__)

SINGLE_SHOT_PATTERN = re.compile(r"\bss\b", re.IGNORECASE)
DIGIT_PATTERN = re.compile(r"^[0-9]$")
PREVIEW_LENGTH = 100
NETWORK_RETRY_DELAY = 10.0
NETWORK_RETRY_TEXT = "Sorry, there was a network issue. Retrying now..."

HELP_TEXT = (
    "Send 'ss' for a single screenshot with extracted text and an answer.\n\n"
    f"Screenshot stacking: send a digit 1-{SLOT_COUNT} to capture into that slot "
    "(sending the same digit again replaces it), then 0 to process every stored "
    "screenshot together.\n\n"
    "/status shows the screenshots stored in your session."
)


def preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    return text[:limit] + "..." if len(text) > limit else text


class ChatReplier:
    """Outbound operations bound to a single chat."""

    def __init__(self, client: TelegramClient, chat_id: str) -> None:
        self.client = client
        self.chat_id = chat_id

    async def text(self, text: str) -> Optional[int]:
        """Send a text message and return its id."""
        result = await self.client.send_message(self.chat_id, text)
        return (result or {}).get("message_id")

    async def photo(self, path: Path, caption: Optional[str] = None) -> None:
        await self.client.send_photo(self.chat_id, path, caption)

    async def document(self, path: Path) -> None:
        await self.client.send_document(self.chat_id, path)

    async def delete(self, message_id: Optional[int]) -> None:
        if message_id is None:
            return
        await self.client.delete_message(self.chat_id, message_id)


class ChatProgressObserver(PipelineObserver):
    """Report batch pipeline progress back into the chat."""

    def __init__(self, replier: ChatReplier, *, echo_combined: bool = True) -> None:
        self.replier = replier
        self.echo_combined = echo_combined

    async def batch_started(self, total: int) -> None:
        await self.replier.text(f"⏳ Starting OCR processing for {total} screenshots...")

    async def item_started(self, position: int, total: int, slot_number: int, artifact: Path) -> None:
        await self.replier.photo(artifact, caption=f"Screenshot {slot_number}")

    async def item_extracted(self, slot_number: int, text: str) -> None:
        await self.replier.text(
            f"📄 Screenshot {slot_number}: Text extracted ({len(text)} chars)\nPreview: {preview(text)}"
        )

    async def item_failed(self, slot_number: int, error: Exception) -> None:
        await self.replier.text(f"❌ Screenshot {slot_number}: Failed to extract text ({error})")

    async def progress(self, position: int, total: int, percent: int) -> None:
        await self.replier.text(f"🔄 Processed screenshot {position}/{total} ({percent}%)")

    async def extraction_finished(self, succeeded: int, total: int, combined_text: str) -> None:
        await self.replier.text(f"✅ OCR processing complete: {succeeded}/{total} images successfully processed")
        if combined_text and self.echo_combined:
            await self.replier.text("✅ All Extracted Text:\n\n" + combined_text.strip())

    async def answer_started(self) -> None:
        await self.replier.text("⏳ Sending all extracted text for an answer...")

    async def answer_ready(self, answer: str) -> None:
        await self.replier.text(answer)

    async def answer_failed(self, error: Exception) -> None:
        await self.replier.text(f"❌ Answer error:\n{error}")


class CommandController:
    """Route authorized chat messages to single-shot or stacking flows."""

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        capture: ScreenCaptureService,
        extractor: TextExtractionService,
        answerer: AnswerService,
        pipeline: BatchPipeline,
        transport: TelegramClient,
        *,
        network_retry_delay: float = NETWORK_RETRY_DELAY,
    ) -> None:
        self.settings = settings
        self.store = store
        self.capture = capture
        self.extractor = extractor
        self.answerer = answerer
        self.pipeline = pipeline
        self.transport = transport
        self.network_retry_delay = network_retry_delay

    async def dispatch(self, payload: Dict[str, Any]) -> None:
        """Handle one raw Bot API update, containing every failure."""
        try:
            update = TelegramUpdate.model_validate(payload)
        except ValidationError as exc:
            LOGGER.warning("Ignoring malformed update: %s", exc)
            return
        message = update.to_incoming()
        if message is None:
            return
        replier = ChatReplier(self.transport, message.chat_id)
        try:
            await self.handle(message, replier)
        except TransportDeliveryError as exc:
            LOGGER.error("Error delivering reply to chat %s: %s", message.chat_id, exc)
            if exc.transient:
                LOGGER.info("Network error detected, will retry in %.0f seconds...", self.network_retry_delay)
                await self._send_retry_notice(replier)
        except Exception:
            LOGGER.exception("Unhandled error for message from chat %s", message.chat_id)

    async def handle(self, message: IncomingMessage, replier: ChatReplier) -> None:
        """Interpret one text message."""
        if self.settings.verbose_logging:
            LOGGER.debug(
                "Received message from user %s(%s) in chat %s: %s",
                message.username,
                message.user_id,
                message.chat_id,
                message.text,
            )
        if not self.settings.is_authorized(message.chat_id):
            LOGGER.info("Unauthorized access attempt from chat ID: %s", message.chat_id)
            return

        text = message.text.strip()
        command = text.split("@", 1)[0].lower()
        if command in ("/start", "/help"):
            await replier.text(HELP_TEXT)
        elif command == "/status":
            await self.report_status(message, replier)
        elif DIGIT_PATTERN.match(text):
            digit = int(text)
            if digit == 0:
                await self.process_session(message, replier)
            else:
                await self.capture_into_slot(message, replier, digit)
        elif SINGLE_SHOT_PATTERN.search(text):
            await self.single_shot(message, replier)

    async def single_shot(self, message: IncomingMessage, replier: ChatReplier) -> None:
        """Capture once, extract, answer, and clean up without touching sessions."""
        LOGGER.info("[%s] Processing single screenshot request...", message.username)
        screenshot: Optional[Path] = None
        try:
            processing_id = await replier.text("Processing your request...")
            screenshot = await self.capture.capture()
            await replier.photo(screenshot, caption="Screenshot")
            await replier.document(screenshot)

            # a disabled extractor returns its sentinel, which is still answered
            extracted: Optional[str] = None
            try:
                extracted = await self.extractor.extract_text(screenshot)
            except ExtractionFailure as exc:
                LOGGER.error("Single-shot extraction failed: %s", exc)
            if self.extractor.enabled:
                await replier.text("Extracted text:\n\n" + (extracted or "Failed to extract text"))

            if self.answerer.enabled and extracted:
                try:
                    answer = await self.answerer.generate_answer(extracted)
                except AnswerFailure as exc:
                    LOGGER.error("Single-shot answer failed: %s", exc)
                    answer = FAILED_ANSWER_TEXT
                await replier.text("Answer:\n\n" + answer)

            await replier.delete(processing_id)
            LOGGER.info("Request processing complete.")
        except (CaptureFailure, TransportDeliveryError) as exc:
            LOGGER.error("Failed to handle screenshot: %s", exc)
            if isinstance(exc, TransportDeliveryError) and exc.transient:
                raise
            await replier.text("Failed to process screenshot.")
        finally:
            if screenshot is not None:
                await release_artifact(screenshot)

    async def capture_into_slot(self, message: IncomingMessage, replier: ChatReplier, digit: int) -> None:
        """Capture a screenshot into slot ``digit`` of the user's session."""
        async with self.store.lock_for(message.user_id):
            session = self.store.get_or_create(message.user_id, message.chat_id)
            try:
                await replier.text(f"📸 Taking screenshot #{digit}...")
                screenshot = await self.capture.capture()
            except CaptureFailure as exc:
                LOGGER.error("Error handling screenshot stack command %d: %s", digit, exc)
                await replier.text(f"❌ Failed to process command {digit}: {exc}")
                return
            await self.store.assign_slot(session, digit, screenshot)

        count = session.capture_count()
        await replier.photo(screenshot, caption=f"Screenshot #{digit}")
        await replier.text(
            f"✅ Screenshot #{digit} captured and saved!\n\n"
            f"📊 Current session status: {count} screenshot(s) stored.\n\n"
            "Press another number to take more screenshots, or 0 to process all."
        )

    async def process_session(self, message: IncomingMessage, replier: ChatReplier) -> None:
        """Run the batch pipeline over the user's stacked screenshots."""
        async with self.store.lock_for(message.user_id):
            session = self.store.get_or_create(message.user_id, message.chat_id)
            count = session.capture_count()
            if count == 0:
                await self.pipeline.run(session)
                await replier.text("❌ No screenshots to process. Take screenshots first using numbers 1-9.")
                return

            processing_id = await self._safe_text(
                replier, f"⏳ Starting to process {count} screenshots... This may take a while."
            )
            observer = ChatProgressObserver(replier, echo_combined=self.answerer.enabled)
            summary = await self.pipeline.run(session, observer)

        await replier.text(summary.render())
        await replier.text("✅ Processing complete! Session cleared and ready for new screenshots.")
        await replier.delete(processing_id)
        LOGGER.info("[%s] Processed %d screenshots", message.username, count)

    async def report_status(self, message: IncomingMessage, replier: ChatReplier) -> None:
        session: Optional[CaptureSession] = self.store.get(message.user_id)
        if session is None or session.is_empty():
            await replier.text(f"No screenshots stored. Send a digit 1-{SLOT_COUNT} to start.")
            return
        slots = ", ".join(f"#{slot}" for slot, _ in session.occupied_slots())
        await replier.text(f"📊 {session.capture_count()} screenshot(s) stored: {slots}\n\nSend 0 to process all.")

    async def _send_retry_notice(self, replier: ChatReplier) -> None:
        await asyncio.sleep(self.network_retry_delay)
        try:
            await replier.text(NETWORK_RETRY_TEXT)
        except TransportDeliveryError as exc:
            LOGGER.error("Failed to send retry message: %s", exc)

    @staticmethod
    async def _safe_text(replier: ChatReplier, text: str) -> Optional[int]:
        """Send a status line whose loss must not stop the batch."""
        try:
            return await replier.text(text)
        except TransportDeliveryError as exc:
            LOGGER.warning("Could not send status message: %s", exc)
            return None
