"""Chai: an HTTP/SSE session broker for the Claude CLI."""

__version__ = "0.3.0"
