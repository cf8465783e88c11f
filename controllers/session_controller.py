"""Read-only session helpers for the HTTP inspection surface."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request

from services.session_store import SessionStore


def _store(request: Request) -> SessionStore:
	store = getattr(request.app.state, "session_store", None)
	if store is None:
		raise HTTPException(status_code=503, detail="Session store unavailable")
	return store


async def list_sessions(request: Request) -> Dict[str, Any]:
	"""Return slot occupancy for every live session."""
	store = _store(request)
	sessions = store.snapshot()
	return {"count": len(sessions), "sessions": sessions}


async def get_session(request: Request, user_id: str) -> Dict[str, Any]:
	"""Return slot occupancy for one user's session."""
	store = _store(request)
	for entry in store.snapshot():
		if entry["user_id"] == user_id:
			return entry
	raise HTTPException(status_code=404, detail=f"Session {user_id} not found")
