"""Mortgage payment ingestion, posting, servicing cycle and bank reconciliation."""

__version__ = "0.1.0"
