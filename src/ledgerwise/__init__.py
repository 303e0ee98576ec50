"""Ledgerwise: financial analytics and an LLM accountant for small businesses."""

__version__ = "0.1.0"
