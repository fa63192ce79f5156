"""Relay core: authenticated publish/fan-out over WebSocket connections.

This module gates each connection with a bearer credential, replays recent
history to the newcomer, persists every submitted message and fans it out to
all live connections.

Key features:
    - Explicit per-connection state machine (connecting/active/rejected/closed)
    - History replay (most recent N messages, oldest first, per-recipient isOwn)
    - Persist-then-broadcast: nothing is delivered unless the store accepted it
    - Concurrent fan-out with asyncio.gather()
    - Automatic dead connection cleanup
    - Optional relay of typing advisories to other connections

Thread Safety:
    This implementation is designed for async/await usage with a single event
    loop. The live connection list and the registry are mutated only on
    event-loop turns, and broadcast iterates over a snapshot copy. It is NOT
    safe to share one manager across threads.

Ordering:
    Each connection's frames are handled one at a time by its own task, so
    its submits are persisted and broadcast in submission order. Submits from
    different connections are not ordered relative to each other.
"""
import asyncio
import logging
import uuid
from typing import List, Optional

from fastapi import WebSocket

from chatflow.auth.schemas import Identity
from chatflow.auth.service import CredentialService
from chatflow.config import get_config
from chatflow.errors import AuthenticationError
from chatflow.store.messages import MessageStore, StoredMessage

from .registry import ConnectionRegistry
from .schemas import (
    ConnectionState,
    MessageView,
    delivered_event,
    error_event,
    history_event,
    identity_event,
    typing_event,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Close code sent when the handshake credential is rejected
AUTH_FAILURE_CLOSE_CODE = 1008

AUTH_FAILURE_REASON = "Authentication error"

EMPTY_CONTENT_ERROR = "Message content is required"

SUBMIT_FAILURE_ERROR = "Failed to send message"


# =============================================================================
# Connection
# =============================================================================


class RelayConnection:
    """One client connection and its lifecycle state.

    Attributes:
        websocket: The underlying WebSocket.
        connection_id: Backend-generated ID, used in logs.
        state: Current ConnectionState.
        identity: Verified identity; set on activation.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.connection_id = str(uuid.uuid4())
        self.state = ConnectionState.CONNECTING
        self.identity: Optional[Identity] = None

    @property
    def is_active(self) -> bool:
        return self.state is ConnectionState.ACTIVE

    def activate(self, identity: Identity) -> None:
        self.identity = identity
        self.state = ConnectionState.ACTIVE

    async def send(self, event: dict) -> bool:
        """Send an event if the connection is still active.

        Returns:
            True if sent, False if the connection is closed or the send failed.
            Events for closed connections are discarded silently.
        """
        if not self.is_active:
            return False
        try:
            await self.websocket.send_json(event)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {self.connection_id}: {e}")
            return False


# =============================================================================
# Relay Manager
# =============================================================================


class RelayManager:
    """Owns the live connection set, the Connection Registry and the fan-out.

    Attributes:
        store: Injected Message Store used for history and persistence.
        credentials: Credential service used to verify handshake tokens.
        registry: Identity -> connection mapping (last-connect-wins).
        active_connections: Every live connection; the broadcast target set.
    """

    def __init__(
        self,
        store: MessageStore,
        credentials: Optional[CredentialService] = None,
        registry: Optional[ConnectionRegistry] = None,
        history_limit: Optional[int] = None,
        relay_typing: Optional[bool] = None,
    ) -> None:
        self.store = store
        self.credentials = credentials or CredentialService()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.active_connections: List[RelayConnection] = []
        self._history_limit = history_limit
        self._relay_typing = relay_typing

    @property
    def history_limit(self) -> int:
        if self._history_limit is not None:
            return self._history_limit
        return get_config().relay.history_limit

    @property
    def relay_typing(self) -> bool:
        if self._relay_typing is not None:
            return self._relay_typing
        return get_config().relay.relay_typing

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(
        self, websocket: WebSocket, token: Optional[str]
    ) -> Optional[RelayConnection]:
        """Verify the handshake credential and activate the connection.

        On failure the WebSocket is closed before being accepted and None is
        returned; no event is ever sent to a rejected client. On success the
        connection is accepted, registered, added to the broadcast set and
        sent its identity event.
        """
        connection = RelayConnection(websocket)

        try:
            identity = self.credentials.verify_token(token)
        except AuthenticationError:
            connection.state = ConnectionState.REJECTED
            logger.info("[Relay] Rejected connection %s: authentication error", connection.connection_id)
            await websocket.close(code=AUTH_FAILURE_CLOSE_CODE, reason=AUTH_FAILURE_REASON)
            return None

        await websocket.accept()
        connection.activate(identity)
        self.registry.register(identity, connection)
        self.active_connections.append(connection)
        logger.info(
            f"[Relay] User {identity.username} connected. "
            f"{self.connection_count} live connections"
        )

        await connection.send(identity_event(identity))
        return connection

    def disconnect(self, connection: RelayConnection) -> None:
        """Move a connection to CLOSED and drop it from fan-out and registry."""
        if connection.state is ConnectionState.CLOSED:
            return
        was_active = connection.is_active
        connection.state = ConnectionState.CLOSED

        if connection in self.active_connections:
            self.active_connections.remove(connection)
        if connection.identity is not None:
            self.registry.unregister(connection.identity, connection)

        if was_active and connection.identity is not None:
            logger.info(
                f"[Relay] User {connection.identity.username} disconnected. "
                f"{self.connection_count} live connections"
            )

    # =========================================================================
    # History
    # =========================================================================

    async def send_history(self, connection: RelayConnection) -> None:
        """Fetch the most recent messages and send them oldest first.

        A store failure is logged and swallowed: the client simply receives no
        history event. A result arriving after the client left is discarded.
        """
        try:
            recent = await self.store.find_recent(self.history_limit)
        except Exception:
            logger.exception("[Relay] Error fetching messages")
            return

        if not connection.is_active:
            return

        views = [
            MessageView.for_recipient(message, connection.identity)
            for message in reversed(recent)
        ]
        await connection.send(history_event(views))

    # =========================================================================
    # Submit + fan-out
    # =========================================================================

    async def submit(
        self, connection: RelayConnection, content: object
    ) -> Optional[StoredMessage]:
        """Persist a message from ``connection`` and broadcast it.

        Empty content is rejected with an error event to the submitter only.
        A persistence failure is reported to the submitter only; nothing is
        broadcast and the connection stays active.

        Returns:
            The stored message, or None if nothing was persisted.
        """
        if not connection.is_active:
            return None

        text = content.strip() if isinstance(content, str) else ""
        if not text:
            await connection.send(error_event(EMPTY_CONTENT_ERROR))
            return None

        try:
            message = await self.store.create(text, connection.identity)
        except Exception:
            logger.exception("[Relay] Error saving message")
            await connection.send(error_event(SUBMIT_FAILURE_ERROR))
            return None

        logger.debug("[Relay] Message from %s: %s", connection.identity.username, text[:50])
        await self.broadcast_message(message)
        return message

    async def broadcast_message(self, message: StoredMessage) -> None:
        """Deliver ``message`` to every live connection concurrently.

        The view is computed per recipient so ``isOwn`` is true only on the
        author's connections, matching the history semantics.
        """
        connections = self.active_connections.copy()
        if not connections:
            return

        results = await asyncio.gather(
            *[
                conn.send(delivered_event(MessageView.for_recipient(message, conn.identity)))
                for conn in connections
            ],
            return_exceptions=True
        )
        self._cleanup_connections(connections, results)

    async def broadcast_except(
        self, event: dict, exclude: RelayConnection
    ) -> None:
        """Send the same event to all live connections except one."""
        connections = [
            conn for conn in self.active_connections
            if conn is not exclude
        ]
        if not connections:
            return

        results = await asyncio.gather(
            *[conn.send(event) for conn in connections],
            return_exceptions=True
        )
        self._cleanup_connections(connections, results)

    async def typing(self, connection: RelayConnection, is_typing: bool) -> None:
        """Relay a typing advisory to the other connections, if enabled."""
        if not self.relay_typing or not connection.is_active:
            return
        await self.broadcast_except(
            typing_event(connection.identity.username, is_typing),
            exclude=connection,
        )

    def _cleanup_connections(
        self, connections: List[RelayConnection], results: list
    ) -> None:
        """Disconnect every connection whose send did not succeed."""
        for conn, success in zip(connections, results):
            if success is not True and conn.state is ConnectionState.ACTIVE:
                logger.debug(f"Removed dead connection {conn.connection_id}")
                self.disconnect(conn)

    # =========================================================================
    # Direct addressing
    # =========================================================================

    async def send_to(self, identity: Identity, event: dict) -> bool:
        """Send an event to the identity's most recent connection.

        Returns:
            False if the identity has no live connection or the send failed.
        """
        connection = self.registry.lookup(identity)
        if connection is None:
            return False
        return await connection.send(event)
