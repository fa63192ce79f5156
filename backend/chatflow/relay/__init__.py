"""Real-time message relay (WebSocket fan-out with persisted history)."""

from .manager import RelayConnection, RelayManager
from .registry import ConnectionRegistry
from .router import router

__all__ = [
    "ConnectionRegistry",
    "RelayConnection",
    "RelayManager",
    "router",
]
