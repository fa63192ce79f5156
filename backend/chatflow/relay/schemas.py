"""Relay protocol types.

Frames are JSON objects with a ``type`` field.

Client -> relay:
    - submit:       {type: "submit", content}   (a frame without type is a submit)
    - typing:       {type: "typing"}            (advisory)
    - stop_typing:  {type: "stop_typing"}       (advisory)

Relay -> client:
    - identity:   {type: "identity", user: {id, username, email}}
    - history:    {type: "history", messages: [MessageView, ...]}  oldest first
    - delivered:  {type: "delivered", message: MessageView}
    - error:      {type: "error", message}
    - typing:     {type: "typing", username, isTyping}  (only if relayed)
"""
from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from chatflow.auth.schemas import Identity
from chatflow.store.messages import StoredMessage


class ConnectionState(str, Enum):
    """Lifecycle of a single relay connection.

    Attributes:
        CONNECTING: Handshake received, credential not yet verified.
        ACTIVE: Verified; receives broadcasts and may submit.
        REJECTED: Credential failed verification; terminal.
        CLOSED: Disconnected; terminal.
    """
    CONNECTING = "connecting"
    ACTIVE = "active"
    REJECTED = "rejected"
    CLOSED = "closed"


class ClientEventType(str, Enum):
    SUBMIT = "submit"
    TYPING = "typing"
    STOP_TYPING = "stop_typing"


class RelayEventType(str, Enum):
    IDENTITY = "identity"
    HISTORY = "history"
    DELIVERED = "delivered"
    ERROR = "error"
    TYPING = "typing"


class MessageView(BaseModel):
    """Per-recipient projection of a stored message. Never persisted.

    Attributes:
        id: Message ID assigned at persistence time.
        content: Message text.
        senderUsername: Username of the author.
        createdAt: When the relay accepted the message (UTC).
        isOwn: True when the recipient is the author.
    """
    id: str = Field(..., description="Message ID")
    content: str = Field(..., description="Message content")
    senderUsername: str = Field(..., description="Username of the sender")
    createdAt: datetime = Field(..., description="Creation time (UTC)")
    isOwn: bool = Field(default=False, description="Whether the recipient sent it")

    @classmethod
    def for_recipient(cls, message: StoredMessage, recipient: Identity) -> "MessageView":
        return cls(
            id=message.id,
            content=message.content,
            senderUsername=message.sender_username,
            createdAt=message.created_at,
            isOwn=message.sender_id == recipient.id,
        )


def identity_event(identity: Identity) -> dict:
    return {"type": RelayEventType.IDENTITY.value, "user": identity.model_dump()}


def history_event(views: List[MessageView]) -> dict:
    return {
        "type": RelayEventType.HISTORY.value,
        "messages": [view.model_dump(mode="json") for view in views],
    }


def delivered_event(view: MessageView) -> dict:
    return {"type": RelayEventType.DELIVERED.value, "message": view.model_dump(mode="json")}


def error_event(message: str) -> dict:
    return {"type": RelayEventType.ERROR.value, "message": message}


def typing_event(username: str, is_typing: bool) -> dict:
    return {"type": RelayEventType.TYPING.value, "username": username, "isTyping": is_typing}
