"""Python client for the ChatFlow relay."""
from .session import ChatSession
from .typing_signal import TypingSignal

__all__ = ["ChatSession", "TypingSignal"]
