"""Batch OCR and answer pipeline for a stacked screenshot session.

Every occupied slot is transcribed one at a time in ascending slot order.
Successful transcriptions are concatenated under a header carrying the
original slot number, and the whole buffer is sent to the answer service in
a single request once every extraction attempt has finished. The session is
reset at the end of every run, whatever the outcome.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

from models.errors import AnswerFailure
from models.session_models import BatchSummary, CaptureSession
from services.openai.answer_service import FAILED_ANSWER_TEXT, AnswerService
from services.openai.text_extractor import TextExtractionService
from services.session_store import SessionStore

LOGGER = logging.getLogger(__name__)

ANSWER_DISABLED_NOTE = "Answer generation is disabled"
NO_TEXT_NOTE = "No text extracted; answer skipped"


def segment_header(slot_number: int) -> str:
    return f"----- SCREENSHOT {slot_number} -----"


def format_segment(slot_number: int, text: str) -> str:
    """Return one tagged segment of the combined text buffer."""
    return f"\n\n{segment_header(slot_number)}\n\n{text}"


class PipelineObserver:
    """Receives progress events from :class:`BatchPipeline`.

    All hooks are no-ops; subclasses override the ones they care about.
    """

    async def batch_started(self, total: int) -> None:
        pass

    async def item_started(self, position: int, total: int, slot_number: int, artifact: Path) -> None:
        pass

    async def item_extracted(self, slot_number: int, text: str) -> None:
        pass

    async def item_failed(self, slot_number: int, error: Exception) -> None:
        pass

    async def progress(self, position: int, total: int, percent: int) -> None:
        pass

    async def extraction_finished(self, succeeded: int, total: int, combined_text: str) -> None:
        pass

    async def answer_started(self) -> None:
        pass

    async def answer_ready(self, answer: str) -> None:
        pass

    async def answer_failed(self, error: Exception) -> None:
        pass


class BatchPipeline:
    """Drive extraction and answering for one session."""

    def __init__(
        self,
        store: SessionStore,
        extractor: TextExtractionService,
        answerer: AnswerService,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.answerer = answerer
        self._clock = clock

    async def run(self, session: CaptureSession, observer: Optional[PipelineObserver] = None) -> BatchSummary:
        """Process every occupied slot of ``session`` and return the summary."""
        observer = observer or PipelineObserver()
        occupied = session.occupied_slots()
        total = len(occupied)
        if total == 0:
            await self.store.reset(session)
            return BatchSummary(total=0)

        summary = BatchSummary(total=total)
        try:
            async with self.store.running(session):
                await self._notify(observer.batch_started(total))
                combined = await self._extract_all(session, occupied, summary, observer)
                summary.combined_text = combined
                await self._notify(observer.extraction_finished(summary.succeeded, total, combined))
                await self._answer(combined, summary, observer)
                summary.duration_seconds = max(0.0, self._clock() - session.start_time)
        finally:
            await self.store.reset(session)
        LOGGER.info(
            "Batch for user %s finished: %d/%d extracted, %d failed",
            session.user_id,
            summary.succeeded,
            total,
            summary.failed,
        )
        return summary

    async def _extract_all(
        self,
        session: CaptureSession,
        occupied: List[tuple],
        summary: BatchSummary,
        observer: PipelineObserver,
    ) -> str:
        segments: List[str] = []
        total = len(occupied)
        for position, (slot_number, artifact) in enumerate(occupied, start=1):
            LOGGER.debug("Processing screenshot %d/%d: %s", position, total, artifact)
            await self._notify(observer.item_started(position, total, slot_number, artifact))
            try:
                text = await self.extractor.extract_text(artifact)
                if not text:
                    raise ValueError("empty extraction result")
            except Exception as exc:
                LOGGER.error("Error extracting text from screenshot %d: %s", slot_number, exc)
                summary.failed += 1
                summary.failed_slots.append(slot_number)
                await self._notify(observer.item_failed(slot_number, exc))
            else:
                session.extracted_texts[slot_number - 1] = text
                segments.append(format_segment(slot_number, text))
                summary.succeeded += 1
                await self._notify(observer.item_extracted(slot_number, text))
            await self.store.release_slot(session, slot_number)
            await self._notify(observer.progress(position, total, round(position / total * 100)))
        return "".join(segments)

    async def _answer(self, combined: str, summary: BatchSummary, observer: PipelineObserver) -> None:
        if not combined:
            summary.answer_note = NO_TEXT_NOTE
            return
        if not self.answerer.enabled:
            summary.answer_note = ANSWER_DISABLED_NOTE
            return
        await self._notify(observer.answer_started())
        try:
            answer = await self.answerer.generate_answer(combined)
        except AnswerFailure as exc:
            LOGGER.error("Error getting answer: %s", exc)
            summary.answer_note = FAILED_ANSWER_TEXT
            await self._notify(observer.answer_failed(exc))
            return
        summary.answer = answer
        await self._notify(observer.answer_ready(answer))

    @staticmethod
    async def _notify(event) -> None:
        """Await an observer hook, logging instead of propagating its errors."""
        try:
            await event
        except Exception as exc:
            LOGGER.warning("Progress notification failed: %s", exc)
