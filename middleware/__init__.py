"""
Middleware components for the Dread whisper engine
"""

from .security import SecurityHeadersMiddleware

__all__ = ["SecurityHeadersMiddleware"]
