"""Terminal client for a streaming AI chat backend."""

__version__ = "0.1.0"
