"""
Dread Whisper Engine API
Timed SMS question rounds: schedule, fire, collect, judge, reveal
"""
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from config import settings
from database import SessionLocal, init_db
from middleware.security import SecurityHeadersMiddleware
from routers import admin_router, sms_router, whispers_router
from services.errors import InvalidRequest, NotFound
from services.game import WhisperGame, get_game, set_game
from services.pages import render_message
from services.sms_gateway import build_gateway

# Setup logger
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Dread Whisper Engine",
    description="Timed SMS question rounds with probabilistic reveals",
    version="1.0.0",
)

app.add_middleware(SecurityHeadersMiddleware)

app.include_router(whispers_router)
app.include_router(sms_router)
app.include_router(admin_router)


@app.exception_handler(InvalidRequest)
async def invalid_request_handler(request: Request, exc: InvalidRequest):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return HTMLResponse(render_message(str(exc)), status_code=404)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """/create answers malformed bodies with its own 400; other routes keep FastAPI's 422"""
    if request.url.path == "/create":
        return JSONResponse(status_code=400, content={"error": "question and participants required"})
    return await request_validation_exception_handler(request, exc)


async def start_game(game: WhisperGame) -> int:
    """Run the recovery sweep off the event loop; overdue jobs send SMS synchronously"""
    return await asyncio.to_thread(game.start)


@app.on_event("startup")
async def startup_event():
    """Create tables, build the gateway (fails fast on missing credentials), re-arm timers"""
    init_db()
    gateway = build_gateway(settings)
    game = WhisperGame(settings, SessionLocal, gateway)
    set_game(game)
    pending = await start_game(game)
    logger.info(f"[OK] Dread listening on {settings.PORT} ({pending} pending job(s) recovered)")


@app.on_event("shutdown")
async def shutdown_event():
    try:
        game = get_game()
    except RuntimeError:
        return
    game.stop()
    set_game(None)


@app.get("/", response_class=PlainTextResponse)
async def health():
    return "dread engine alive. POST /create to schedule. webhook: POST /sms"


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT)
