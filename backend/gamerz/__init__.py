"""Gamerz backend: gated per-game chatrooms with real-time messaging."""

__version__ = "0.1.0"
