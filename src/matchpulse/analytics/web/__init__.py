"""Web entrypoints for the match analytics service."""

from .api import create_api_app

__all__ = ["create_api_app"]
