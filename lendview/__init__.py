"""Position analytics and event ledger client for a collateralized lending pool."""

__version__ = "0.1.0"
