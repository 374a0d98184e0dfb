"""
Whisper chain endpoints: schedule a chain, open a session, answer it
"""
from typing import Any
import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from services.game import WhisperGame, get_game
from services.pages import render_message, render_session_page
from services.response_collector import SubmitOutcome

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Whispers"])

OUTCOME_MESSAGES = {
    SubmitOutcome.ACCEPTED: "answer recorded. dread is patient.",
    SubmitOutcome.ALREADY_USED: "dread: session used.",
    SubmitOutcome.EXPIRED: "dread: time expired.",
}


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateChainRequest(BaseModel):
    """
    Schedule a whisper; window is in minutes, e.g. {"min": 1, "max": 15}.

    Fields are loosely typed: ChainScheduler.create validates them and
    answers bad input with 400 rather than a schema error.
    """
    question: Any = None
    participants: Any = None
    window: Any = None


class CreateChainResponse(BaseModel):
    ok: bool = True
    id: str
    scheduledInSeconds: int


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/create", response_model=CreateChainResponse)
def create_chain(body: CreateChainRequest, game: WhisperGame = Depends(get_game)):
    chain_id, delay = game.chains.create(body.question, body.participants, body.window)
    return CreateChainResponse(id=chain_id, scheduledInSeconds=delay)


@router.get("/open/{token}", response_class=HTMLResponse)
def open_session(token: str, game: WhisperGame = Depends(get_game)):
    view = game.collector.view(token)
    return HTMLResponse(render_session_page(view, game.settings.SOLO_WINDOW_SECONDS))


@router.post("/respond/{token}", response_class=HTMLResponse)
def respond(token: str, answer: str = Form(""), game: WhisperGame = Depends(get_game)):
    result = game.collector.submit(token, answer)
    return HTMLResponse(render_message(OUTCOME_MESSAGES[result.outcome]))
