"""Local "typing" / "stopped typing" signal generator.

The first keystroke fires ``on_start``. Every keystroke cancels and restarts
an inactivity timer; when it expires ``on_stop`` fires. ``stop()`` ends the
typing state immediately (e.g. when the message is sent).
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_IDLE_SECONDS = 1.0

Callback = Callable[[], Awaitable[None]]


class TypingSignal:
    """Debounced typing state for one input box."""

    def __init__(
        self,
        on_start: Callback,
        on_stop: Callback,
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
    ) -> None:
        self._on_start = on_start
        self._on_stop = on_stop
        self.idle_seconds = idle_seconds
        self.is_typing = False
        self._timer: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    async def keystroke(self) -> None:
        """Register a keystroke, starting the typing state if needed."""
        if not self.is_typing:
            self.is_typing = True
            await self._on_start()
        self._restart_timer()

    async def stop(self) -> None:
        """Leave the typing state now, firing ``on_stop`` if it was active."""
        self._cancel_timer()
        if self.is_typing:
            self.is_typing = False
            await self._on_stop()

    def cancel(self) -> None:
        """Drop any pending timer without firing callbacks."""
        self._cancel_timer()
        self.is_typing = False

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._expire())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _expire(self) -> None:
        await asyncio.sleep(self.idle_seconds)
        self._timer = None
        if self.is_typing:
            self.is_typing = False
            try:
                await self._on_stop()
            except Exception:
                logger.exception("stop-typing callback failed")
