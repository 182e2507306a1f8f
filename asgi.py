"""
asgi.py -- ASGI entry point for FolioAdmin.

api/main.py builds the app; this module is what the server imports, so the
run command stays the same if more routers are assembled here later.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
