"""In-memory store for per-user screenshot stacking sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional

from models.session_models import SLOT_COUNT, CaptureSession
from services.capture.artifacts import ArtifactReleaser, release_artifact

LOGGER = logging.getLogger(__name__)


class SessionStore:
	"""Own every live session, its capture artifacts, and its expiry.

	Args:
		timeout_seconds: Age after which an idle session is purged by the sweep.
		clock: Returns the current time in epoch seconds.
		releaser: Coroutine function that deletes one artifact.
	"""

	def __init__(
		self,
		timeout_seconds: float,
		*,
		clock: Callable[[], float] = time.time,
		releaser: ArtifactReleaser = release_artifact,
	) -> None:
		self.timeout_seconds = timeout_seconds
		self._clock = clock
		self._release = releaser
		self._sessions: Dict[str, CaptureSession] = {}
		self._locks: Dict[str, asyncio.Lock] = {}
		self._lock_users: Dict[str, int] = {}

	def __len__(self) -> int:
		return len(self._sessions)

	def __contains__(self, user_id: object) -> bool:
		return user_id in self._sessions

	def get(self, user_id: str) -> Optional[CaptureSession]:
		"""Return the session for ``user_id`` or None."""
		return self._sessions.get(user_id)

	def get_or_create(self, user_id: str, chat_id: str) -> CaptureSession:
		"""Return the user's session, creating an empty one on first use."""
		session = self._sessions.get(user_id)
		if session is None:
			session = CaptureSession(user_id=user_id, chat_id=chat_id, start_time=self._clock())
			self._sessions[user_id] = session
			LOGGER.debug("Created session for user %s", user_id)
		return session

	def is_locked(self, user_id: str) -> bool:
		"""True while a task holds or waits for ``user_id``'s lock."""
		return user_id in self._locks

	@asynccontextmanager
	async def lock_for(self, user_id: str) -> AsyncIterator[None]:
		"""Hold the mutual-exclusion lock guarding ``user_id``'s session.

		The lock entry lives only while some task holds or waits for it.
		"""
		lock = self._locks.get(user_id)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[user_id] = lock
		self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
		try:
			async with lock:
				yield
		finally:
			self._lock_users[user_id] -= 1
			if not self._lock_users[user_id]:
				del self._lock_users[user_id]
				del self._locks[user_id]

	async def assign_slot(self, session: CaptureSession, slot_number: int, artifact: Path) -> None:
		"""Store ``artifact`` under ``slot_number`` (1-9), releasing whatever was there."""
		index = _slot_index(slot_number)
		previous = session.slots[index]
		if previous is not None and previous != artifact:
			await self._release_quietly(previous)
		session.slots[index] = artifact
		session.extracted_texts[index] = None

	async def release_slot(self, session: CaptureSession, slot_number: int) -> Optional[Path]:
		"""Release and clear one slot, returning the artifact that was held."""
		index = _slot_index(slot_number)
		artifact = session.slots[index]
		if artifact is None:
			return None
		session.slots[index] = None
		if await self._release_quietly(artifact):
			return artifact
		return None

	async def reset(self, session: CaptureSession) -> None:
		"""Clear slots and extracted texts in place and restart the session clock."""
		for slot_number, _ in session.occupied_slots():
			await self.release_slot(session, slot_number)
		session.slots = [None] * SLOT_COUNT
		session.extracted_texts = [None] * SLOT_COUNT
		session.start_time = self._clock()

	@asynccontextmanager
	async def running(self, session: CaptureSession) -> AsyncIterator[CaptureSession]:
		"""Mark ``session`` busy so the expiry sweep leaves it alone."""
		session.busy = True
		try:
			yield session
		finally:
			session.busy = False

	def is_expired(self, session: CaptureSession, now: Optional[float] = None, timeout_seconds: Optional[float] = None) -> bool:
		now = self._clock() if now is None else now
		timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
		return now - session.start_time > timeout

	async def sweep_expired(self, now: Optional[float] = None, timeout_seconds: Optional[float] = None) -> List[Path]:
		"""Purge sessions older than the timeout and return the released artifacts.

		Sessions in use by a batch run, or whose user lock is held or awaited,
		are skipped until the next sweep. Release failures are logged per
		artifact and do not stop the sweep.
		"""
		now = self._clock() if now is None else now
		released: List[Path] = []
		for user_id, session in list(self._sessions.items()):
			if not self.is_expired(session, now, timeout_seconds):
				continue
			if session.busy or self.is_locked(user_id):
				LOGGER.info("Deferring expiry of busy session for user %s", user_id)
				continue
			# nobody holds or awaits the lock, so this acquires without yielding
			async with self.lock_for(user_id):
				for slot_number, artifact in session.occupied_slots():
					session.slots[slot_number - 1] = None
					if await self._release_quietly(artifact):
						released.append(artifact)
				if self._sessions.get(user_id) is session:
					del self._sessions[user_id]
					LOGGER.info("Cleaned up expired session for user %s", user_id)
		return released

	def snapshot(self) -> List[Dict[str, object]]:
		"""Return a JSON-friendly status view of every session."""
		now = self._clock()
		return [
			{
				"user_id": session.user_id,
				"chat_id": session.chat_id,
				"occupied_slots": [slot for slot, _ in session.occupied_slots()],
				"age_seconds": round(now - session.start_time, 3),
				"busy": session.busy,
			}
			for session in self._sessions.values()
		]

	async def _release_quietly(self, artifact: Path) -> bool:
		try:
			await self._release(artifact)
		except Exception as exc:
			LOGGER.error("Failed to delete screenshot %s: %s", artifact, exc)
			return False
		return True


def _slot_index(slot_number: int) -> int:
	if not 1 <= slot_number <= SLOT_COUNT:
		raise ValueError(f"Slot number must be between 1 and {SLOT_COUNT}, got {slot_number}")
	return slot_number - 1
