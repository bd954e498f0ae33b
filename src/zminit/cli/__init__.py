"""Command-line interface for zminit."""

from ._app import app, create_app, main

__all__ = ["app", "create_app", "main"]
