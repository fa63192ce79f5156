"""ChatFlow backend: credential service, message store and WebSocket relay."""

__version__ = "0.1.0"
