"""Client session for the ChatFlow relay.

Wraps the two halves of the protocol a chat front-end needs:

    - HTTP: ``register`` / ``login`` against ``/api/auth`` (httpx)
    - WebSocket: ``connect`` to ``/ws?token=...`` and consume relay events
      (websockets)

Relay events are folded into local session state:

    identity  -> user
    history   -> messages (replaced)
    delivered -> messages (appended)
    error     -> errors
    typing    -> typing_users

``isOwn`` is reconciled on the client as well: a message whose sender
username matches the session user is always treated as our own.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from urllib.parse import quote

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from chatflow.auth.schemas import Identity
from chatflow.errors import (
    AuthenticationError,
    ChatFlowError,
    InvalidCredentialsError,
    ValidationError,
)
from chatflow.relay.schemas import ClientEventType, MessageView, RelayEventType

from .typing_signal import DEFAULT_IDLE_SECONDS, TypingSignal

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3001"

EventCallback = Callable[[Dict[str, Any]], Awaitable[None]]


def _error_from_response(response: httpx.Response) -> ChatFlowError:
    try:
        message = response.json().get("message") or response.reason_phrase
    except (ValueError, AttributeError):
        message = response.reason_phrase or "Request failed"

    if response.status_code == 401:
        return InvalidCredentialsError(message)
    if response.status_code == 400:
        return ValidationError(message)
    return ChatFlowError(message, status_code=response.status_code)


class ChatSession:
    """Stateful client for one user of the relay.

    Attributes:
        base_url: HTTP root of the backend, e.g. ``http://localhost:3001``.
        token: Bearer credential from the last register/login.
        user: Identity confirmed by the relay (or returned at login).
        messages: Rendered conversation, oldest first.
        errors: Error messages received from the relay, in arrival order.
        typing_users: Usernames currently advertised as typing.
        is_connected: Whether the relay socket is open.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_event: Optional[EventCallback] = None,
        typing_idle_seconds: float = DEFAULT_IDLE_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.user: Optional[Identity] = None
        self.messages: List[MessageView] = []
        self.errors: List[str] = []
        self.typing_users: Set[str] = set()
        self.is_connected = False

        self._http = http_client
        self._owns_http = http_client is None
        self._on_event = on_event
        self._ws = None
        self.typing = TypingSignal(
            on_start=lambda: self._send({"type": ClientEventType.TYPING.value}),
            on_stop=lambda: self._send({"type": ClientEventType.STOP_TYPING.value}),
            idle_seconds=typing_idle_seconds,
        )

    # =========================================================================
    # HTTP: register / login
    # =========================================================================

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.base_url, timeout=10.0)
        return self._http

    async def register(self, username: str, email: str, password: str) -> Identity:
        """Create an account and keep the issued token.

        Raises:
            ValidationError: Missing fields, short password or duplicates.
            ChatFlowError: Any other non-200 answer.
        """
        return await self._authenticate(
            "/api/auth/register",
            {"username": username, "email": email, "password": password},
        )

    async def login(self, email: str, password: str) -> Identity:
        """Exchange credentials for a token.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password.
        """
        return await self._authenticate(
            "/api/auth/login", {"email": email, "password": password}
        )

    async def _authenticate(self, path: str, payload: Dict[str, str]) -> Identity:
        response = await self.http.post(path, json=payload)
        if response.status_code != 200:
            raise _error_from_response(response)

        body = response.json()
        self.token = body["token"]
        self.user = Identity(**body["user"])
        logger.info(f"[Session] Authenticated as {self.user.username}")
        return self.user

    async def logout(self) -> None:
        """Forget the credential and local state, closing the relay socket."""
        await self.disconnect()
        self.token = None
        self.user = None
        self.messages = []
        self.errors = []
        self.typing_users.clear()

    # =========================================================================
    # WebSocket: connect / receive
    # =========================================================================

    @property
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            root = "wss://" + self.base_url[len("https://"):]
        elif self.base_url.startswith("http://"):
            root = "ws://" + self.base_url[len("http://"):]
        else:
            root = self.base_url
        return f"{root}/ws?token={quote(self.token or '', safe='')}"

    async def connect(self) -> None:
        """Open the relay socket with the current token.

        Raises:
            AuthenticationError: No token, or the relay refused the handshake.
        """
        if not self.token:
            raise AuthenticationError()
        try:
            self._ws = await websockets.connect(self.ws_url)
        except InvalidHandshake as e:
            logger.info(f"[Session] Relay refused the handshake: {e}")
            raise AuthenticationError() from e
        self.is_connected = True

    async def receive(self) -> Optional[Dict[str, Any]]:
        """Receive and apply one relay event.

        Returns:
            The event, or None once the socket has closed.
        """
        if self._ws is None:
            return None
        try:
            raw = await self._ws.recv()
        except ConnectionClosed:
            self.is_connected = False
            return None

        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[Session] Ignoring malformed relay frame")
            return {}
        await self.handle_event(event)
        return event

    async def run(self) -> None:
        """Consume relay events until the socket closes."""
        while self.is_connected:
            if await self.receive() is None:
                break

    async def disconnect(self) -> None:
        self.typing.cancel()
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self.is_connected = False

    async def close(self) -> None:
        await self.disconnect()
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    # =========================================================================
    # Event handling
    # =========================================================================

    async def handle_event(self, event: Dict[str, Any]) -> None:
        """Fold one relay event into local state."""
        event_type = event.get("type")

        if event_type == RelayEventType.IDENTITY.value:
            self.user = Identity(**event["user"])
        elif event_type == RelayEventType.HISTORY.value:
            self.messages = [self._view(item) for item in event.get("messages", [])]
        elif event_type == RelayEventType.DELIVERED.value:
            view = self._view(event["message"])
            self.messages.append(view)
            self.typing_users.discard(view.senderUsername)
        elif event_type == RelayEventType.ERROR.value:
            message = event.get("message", "")
            logger.info(f"[Session] Relay error: {message}")
            self.errors.append(message)
        elif event_type == RelayEventType.TYPING.value:
            username = event.get("username")
            if username:
                if event.get("isTyping"):
                    self.typing_users.add(username)
                else:
                    self.typing_users.discard(username)
        else:
            logger.debug("[Session] Ignoring event type %s", event_type)

        if self._on_event is not None:
            await self._on_event(event)

    def _view(self, data: Dict[str, Any]) -> MessageView:
        view = MessageView(**data)
        if not view.isOwn and self.user is not None and view.senderUsername == self.user.username:
            view = view.model_copy(update={"isOwn": True})
        return view

    # =========================================================================
    # Outgoing
    # =========================================================================

    async def send_message(self, content: str) -> bool:
        """Submit a message; blank input is ignored locally.

        Returns:
            True if a submit frame was sent.
        """
        text = content.strip() if content else ""
        if not text:
            return False
        await self.typing.stop()
        return await self._send({"type": ClientEventType.SUBMIT.value, "content": text})

    async def notify_typing(self) -> None:
        """Call on each keystroke in the input box."""
        await self.typing.keystroke()

    async def _send(self, frame: Dict[str, Any]) -> bool:
        if self._ws is None or not self.is_connected:
            return False
        try:
            await self._ws.send(json.dumps(frame))
            return True
        except ConnectionClosed:
            self.is_connected = False
            return False
