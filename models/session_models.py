"""Session domain models for the screenshot stacking workflow."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

SLOT_COUNT = 9


def _empty_slots() -> List[Optional[Path]]:
	return [None] * SLOT_COUNT


def _empty_texts() -> List[Optional[str]]:
	return [None] * SLOT_COUNT


@dataclass
class IncomingMessage:
	"""Transport-neutral view of an inbound chat text message."""

	chat_id: str
	user_id: str
	username: str
	text: str


@dataclass
class CaptureSession:
	"""In-memory state for one user's capture-and-analyze workflow.

	Slot ``i`` (zero based) holds the artifact captured under command digit
	``i + 1``. ``extracted_texts`` uses the same indexing.
	"""

	user_id: str
	chat_id: str
	slots: List[Optional[Path]] = field(default_factory=_empty_slots)
	extracted_texts: List[Optional[str]] = field(default_factory=_empty_texts)
	start_time: float = field(default_factory=lambda: time.time())
	busy: bool = False

	def occupied_slots(self) -> List[Tuple[int, Path]]:
		"""Return ``(slot_number, artifact)`` pairs in ascending slot order."""
		return [(index + 1, path) for index, path in enumerate(self.slots) if path is not None]

	def capture_count(self) -> int:
		"""Return how many slots currently hold an artifact."""
		return sum(1 for path in self.slots if path is not None)

	def is_empty(self) -> bool:
		return self.capture_count() == 0


@dataclass
class BatchSummary:
	"""Outcome of one batch pipeline run."""

	total: int
	succeeded: int = 0
	failed: int = 0
	failed_slots: List[int] = field(default_factory=list)
	duration_seconds: float = 0.0
	answer: Optional[str] = None
	answer_note: Optional[str] = None
	combined_text: str = ""

	@property
	def nothing_to_do(self) -> bool:
		return self.total == 0

	def render(self) -> str:
		"""Return the chat-ready summary block."""
		if self.nothing_to_do:
			return "No screenshots to process."
		lines = []
		if self.answer_note:
			lines.extend([f"ℹ️ {self.answer_note}", ""])
		lines.append("📊 Session Summary:")
		lines.append(f"• Total screenshots: {self.total}")
		lines.append(f"• Successfully processed: {self.succeeded}")
		lines.append(f"• Failed: {self.failed}")
		if self.failed_slots:
			lines.append("• Failed slots: " + ", ".join(str(slot) for slot in self.failed_slots))
		lines.append(f"• Session duration: {round(self.duration_seconds)} seconds")
		return "\n".join(lines)
