"""
asgi.py -- Application assembly for Gatehouse.

Kept separate from api/main.py so servers and process managers have one
stable import path regardless of how the api/ package is arranged.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
