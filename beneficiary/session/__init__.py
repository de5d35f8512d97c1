"""Local persistence for the auth session and cached records."""

from .store import SessionStore

__all__ = ["SessionStore"]
