"""
Admin API endpoints
"""
import logging
import secrets

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from services.game import WhisperGame, get_game
from services.voice import CALLS_THE_PHRASE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def admin_authorized(x_admin: str, game: WhisperGame) -> bool:
    """Shared-secret header check"""
    return secrets.compare_digest(x_admin.encode("utf-8"), game.settings.ADMIN_SECRET.encode("utf-8"))


@router.post("/call-phrase")
def call_phrase(
    x_admin: str = Header("", alias="X-Admin"),
    game: WhisperGame = Depends(get_game),
):
    if not admin_authorized(x_admin, game):
        logger.warning("[ADMIN] Rejected call-phrase with bad secret")
        return JSONResponse(status_code=401, content={"error": "no"})

    game.mantle.call_phrase()
    everyone = game.consent.consented_phones()
    for phone in everyone:
        game.narrator.send(phone, CALLS_THE_PHRASE)
    logger.info(f"[ADMIN] Phrase called to {len(everyone)} participant(s)")
    return {"ok": True}
