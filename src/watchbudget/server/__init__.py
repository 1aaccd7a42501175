"""HTTP surface of the session engine."""

from watchbudget.server.app import create_app

__all__ = ["create_app"]
