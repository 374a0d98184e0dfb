"""
Application configuration using environment variables
"""
from pydantic_settings import BaseSettings
from typing import Optional
from dotenv import load_dotenv

# Load .env file
load_dotenv()


class Settings(BaseSettings):
    # Server
    PORT: int = 3000
    BASE_URL: str = "https://dread.ap"  # session links are built from this

    # Database
    DATABASE_URL: str = "sqlite:///./dread.db"

    # App settings
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ==========================================================================
    # SMS GATEWAY (Twilio)
    # ==========================================================================

    SMS_ENABLED: bool = True  # False logs outbound messages instead of sending
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_NUMBER: Optional[str] = None  # e.g. +1323XXXXXXX
    TWILIO_API_BASE: str = "https://api.twilio.com/2010-04-01"
    SMS_TIMEOUT_SECONDS: float = 10.0

    # ==========================================================================
    # TIMING
    # ==========================================================================

    SOLO_WINDOW_SECONDS: int = 40
    MIRRORED_WINDOW_SECONDS: int = 30
    MIRRORED_ABANDON_SECONDS: int = 3600  # mirrored rounds close even if nobody opens
    FIRE_WINDOW_MIN_MINUTES: float = 1
    FIRE_WINDOW_MAX_MINUTES: float = 15
    ADJUDICATION_GRACE_MS: int = 300
    ANSWER_SETTLE_MS: int = 200

    # ==========================================================================
    # ROUTING & SPICE
    # ==========================================================================

    MIRROR_CHANCE: float = 0.12  # share of rounds mirrored when 2+ eligible
    REVEAL_PROB: float = 0.72
    BLANK_PROB: float = 0.0015  # ~0.15% independent blank folklore ping

    # ==========================================================================
    # RIDDLE / MANTLE / ADMIN
    # ==========================================================================

    RIDDLE_TEXT: str = "speak nothing of the riddle. keep only the phrase. when dread calls, answer."
    KEYPHRASE: str = "JACKDAW ASCENDS"
    MANTLE_DAYS: int = 7
    ADMIN_SECRET: str = "change-me"

    @property
    def session_base_url(self) -> str:
        """BASE_URL without trailing slashes"""
        return self.BASE_URL.rstrip("/")

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()
