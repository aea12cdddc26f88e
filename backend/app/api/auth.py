import logging

from fastapi import APIRouter

from app.schemas import SessionOut, SessionRequest
from app.services.auth import issue_token, new_player_id

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_PLAYER_ID_LENGTH = 64


@router.post("/api/session", response_model=SessionOut)
async def open_session(req: SessionRequest) -> SessionOut:
    """
    Hand out a session token. A client that already has a player id sends
    it back to keep the same identity across reconnects.
    """
    player_id = (req.player_id or "").strip()[:MAX_PLAYER_ID_LENGTH] or new_player_id()
    token = issue_token(player_id, req.user_id)
    logger.info("Session opened for %s (account=%s)", player_id, bool(req.user_id))
    return SessionOut(token=token, player_id=player_id, user_id=req.user_id, player_name=req.player_name)
