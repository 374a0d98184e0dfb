"""
Background job handlers
"""
