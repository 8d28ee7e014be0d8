"""Streaming relay between a chat UI and an OpenWebUI-compatible backend."""

__version__ = "0.1.0"
