"""HTTP surface for the program store."""

from progstore.api.server import create_app

__all__ = ["create_app"]
