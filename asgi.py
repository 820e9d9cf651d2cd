"""
asgi.py -- Application assembly for TeleGuard.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
