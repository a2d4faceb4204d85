"""Application services."""
from .monitor import Monitor
from .session import Session, SessionClosedError

__all__ = ["Monitor", "Session", "SessionClosedError"]
