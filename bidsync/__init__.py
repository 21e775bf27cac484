"""Realtime sync core for the auction marketplace client."""

__version__ = "1.0.0"
