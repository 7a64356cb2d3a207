"""
FastAPI/ASGI application entrypoint.

Run with: uvicorn backend_riskgate.api_server.app:app --host 0.0.0.0 --port 8000
"""

from backend_riskgate.api_server.server import app

__all__ = ["app"]
