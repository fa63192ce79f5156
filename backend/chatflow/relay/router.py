"""Relay router providing the WebSocket endpoint.

This module provides:
    - WebSocket /ws: Authenticated real-time chat relay

The handshake credential is taken from the ``token`` query parameter
(browsers cannot set headers on WebSocket requests) or from an
``Authorization: Bearer <token>`` header.

Protocol Flow:
    1. Client connects with a token
       -> invalid/expired/missing: connection refused (close code 1008)
       -> Server sends: {type: "identity", user: {id, username, email}}
       -> Server sends: {type: "history", messages: [...]}  (oldest first)
    2. Client sends: {type: "submit", content}
       -> Server broadcasts: {type: "delivered", message: {...}}
       -> On failure, submitter only: {type: "error", message}
    3. Client sends: {type: "typing"} / {type: "stop_typing"}
       -> Relayed to others as {type: "typing", ...} only when enabled
    4. On disconnect the connection leaves fan-out and the registry
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from .manager import RelayConnection, RelayManager
from .schemas import ClientEventType, error_event

logger = logging.getLogger(__name__)

router = APIRouter()

INTERNAL_ERROR = "Internal server error"


def get_relay(websocket: WebSocket) -> RelayManager:
    """Return the relay manager the app factory attached to app state."""
    return websocket.app.state.relay


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def _receive_frame(websocket: WebSocket) -> Optional[str]:
    """Receive the next text (or UTF-8 binary) frame.

    Raises:
        WebSocketDisconnect: When the client goes away.
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    if message.get("text") is not None:
        return message["text"]
    if message.get("bytes") is not None:
        try:
            return message["bytes"].decode("utf-8")
        except UnicodeDecodeError:
            return None
    return None


async def _handle_frame(relay: RelayManager, connection: RelayConnection, raw: Optional[str]) -> None:
    try:
        data = json.loads(raw) if raw is not None else None
    except json.JSONDecodeError:
        data = None

    if not isinstance(data, dict):
        await connection.send(error_event("Invalid message format: expected a JSON object"))
        return

    message_type = data.get("type") or ClientEventType.SUBMIT.value
    logger.debug("[WS] %s received: type=%s", connection.connection_id, message_type)

    # --- Handle TYPING advisories ---
    if message_type in (ClientEventType.TYPING.value, ClientEventType.STOP_TYPING.value):
        await relay.typing(connection, message_type == ClientEventType.TYPING.value)
        return

    # --- Handle SUBMIT ---
    if message_type == ClientEventType.SUBMIT.value:
        await relay.submit(connection, data.get("content"))
        return

    await connection.send(error_event(f"Unsupported event type: {message_type}"))


@router.websocket("/ws")
async def relay_websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer credential issued at login"),
) -> None:
    """WebSocket endpoint for the authenticated chat relay.

    Handles the complete lifecycle of a single client: handshake, history
    replay, the submit loop and disconnect cleanup. Unexpected errors while
    handling a frame are logged and answered with a generic error event; they
    never end the process.

    Args:
        websocket: The WebSocket connection.
        token: Credential from the query string (header used if absent).
    """
    relay = get_relay(websocket)
    credential = token or _bearer_token(websocket.headers.get("authorization"))

    connection = await relay.connect(websocket, credential)
    if connection is None:
        return

    try:
        await relay.send_history(connection)

        # Main message loop
        while True:
            raw = await _receive_frame(websocket)
            try:
                await _handle_frame(relay, connection, raw)
            except Exception:
                logger.exception("[WS] Unexpected error handling frame from %s", connection.connection_id)
                await connection.send(error_event(INTERNAL_ERROR))

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("[WS] Connection %s failed", connection.connection_id)
        relay.disconnect(connection)
        try:
            await websocket.close(code=1011)
        except RuntimeError:
            logger.debug("[WS] Connection %s already closed", connection.connection_id)
    finally:
        relay.disconnect(connection)
