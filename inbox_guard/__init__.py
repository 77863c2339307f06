"""Rate limiting and abuse mitigation core for the chat-operations dashboard."""

__version__ = "0.1.0"
