"""Web interface for the brand assistant."""

from .app import create_app

__all__ = ["create_app"]
