"""
Inbound SMS webhook (Twilio)

Order matters: opt-out first, then the consent gate, then the mantle
contest, then answers for an open session, then small talk.
"""
import logging
import re

from fastapi import APIRouter, Depends, Form
from fastapi.responses import Response

from services.game import WhisperGame, get_game
from services.response_collector import SubmitOutcome
from services.voice import (
    ANSWER_RECORDED, BEARER_CHOSEN, CONSENT_PHRASE, LEFT_CIRCLE, MARKED_PROMPT,
    MAY_BE_MARKED, WEAR_THE_NAME, line, mask,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["SMS"])

OPT_OUT_RE = re.compile(r"^(stop|unsubscribe|quit|cancel)\b", re.IGNORECASE)

SMS_REPLIES = {
    SubmitOutcome.ACCEPTED: ANSWER_RECORDED,
    SubmitOutcome.ALREADY_USED: "session used.",
    SubmitOutcome.EXPIRED: "time expired.",
}


def twiml_ack() -> Response:
    """Empty TwiML: replies go out through the REST API, not the webhook"""
    return Response(content="<Response></Response>", media_type="text/xml")


@router.post("/sms")
def inbound_sms(
    From: str = Form(""),
    Body: str = Form(""),
    game: WhisperGame = Depends(get_game),
):
    sender = From.strip()
    body = Body.strip()
    lower = body.lower()

    if not sender:
        logger.warning("[SMS] Inbound message without sender")
        return twiml_ack()

    if OPT_OUT_RE.match(lower):
        game.consent.set_opt_out(sender)
        game.narrator.send(sender, LEFT_CIRCLE)
        return twiml_ack()

    user = game.consent.ensure_user(sender)
    if not user.consented:
        if lower == CONSENT_PHRASE:
            game.consent.set_consent(sender, True)
            game.narrator.send(sender, MAY_BE_MARKED)
        else:
            game.narrator.send(sender, MARKED_PROMPT)
        return twiml_ack()
    if user.opted_out:
        return twiml_ack()

    if game.mantle.phrase_call_active() and game.mantle.try_claim(sender, body):
        game.narrator.send(sender, WEAR_THE_NAME)
        for phone in game.consent.consented_phones():
            if phone != sender:
                game.narrator.send(phone, BEARER_CHOSEN)
        logger.info(f"[MANTLE] {mask(sender)} claimed the mantle")
        return twiml_ack()

    result = game.collector.submit_by_sender(sender, body)
    if result is not None:
        game.narrator.send(sender, SMS_REPLIES[result.outcome])
        return twiml_ack()

    game.narrator.send(sender, line("normal", game.rng))
    return twiml_ack()
