"""HTTP front-end for the connection manager."""

from .api_server import create_app

__all__ = ["create_app"]
