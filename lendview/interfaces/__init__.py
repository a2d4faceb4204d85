"""Protocol interfaces for the lending dashboard."""
from .chain import ChainClient
from .notifier import Notifier

__all__ = ["ChainClient", "Notifier"]
