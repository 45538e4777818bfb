"""Firefly: long-term memory for a chat companion."""

__version__ = "0.1.0"
