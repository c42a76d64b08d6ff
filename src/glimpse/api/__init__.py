"""HTTP and WebSocket surface."""

from glimpse.api.routes import create_app

__all__ = ["create_app"]
