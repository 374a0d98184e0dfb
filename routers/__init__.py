"""
API Routers for the Dread whisper engine
"""

from .whispers import router as whispers_router
from .sms import router as sms_router
from .admin import router as admin_router

__all__ = ["whispers_router", "sms_router", "admin_router"]
