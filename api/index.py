"""
Vercel serverless function entry point.

The Python runtime serves the ASGI `app` exported from this module, so every
/api/* path is routed through the FastAPI app in api.server. For local
development run `python -m api.server` instead.
"""

from api.server import app

__all__ = ["app"]
