"""
FastAPI/ASGI application entrypoint.

Run with: uvicorn walletlink.api_server.app:app --host 127.0.0.1 --port 8000
"""

from walletlink.api_server.server import app, create_app

__all__ = ["app", "create_app"]
