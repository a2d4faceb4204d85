"""Notifier protocol — alert channel abstraction."""
from typing import Protocol


class Notifier(Protocol):
    """Channel for health-factor alerts and routine position summaries."""

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Deliver an audible alert for a position at or below a health threshold."""
        ...

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Deliver a routine account summary."""
        ...
