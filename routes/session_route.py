"""FastAPI routes exposing live stacking sessions."""

from fastapi import APIRouter, HTTPException, Request

from controllers.session_controller import get_session, list_sessions

router = APIRouter(prefix="/sessions")


@router.get("")
async def list_sessions_route(request: Request):
	try:
		return await list_sessions(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{user_id}")
async def get_session_route(request: Request, user_id: str):
	try:
		return await get_session(request, user_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
