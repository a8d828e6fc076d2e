"""HTTP webhook receiver."""

from .app import create_app

__all__ = ["create_app"]
