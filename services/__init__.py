"""
Whisper engine services
"""
