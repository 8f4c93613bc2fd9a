"""Utilities for creating and validating chat relay payloads."""

import enum
from dataclasses import dataclass
from typing import Any, Dict


class SendResult(enum.Enum):
    """Outcome of relaying a single ``sendMessage`` request."""
    OK = "ok"
    AUTH_EXPIRED = "auth_expired"
    UNAVAILABLE = "unavailable"


class ProtocolError(ValueError):
    """Raised when an inbound payload does not have the expected shape."""


def require_conversation_id(value: Any) -> str:
    """Return ``value`` if it is a usable conversation id, else raise ProtocolError."""
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"Invalid conversation id: {value!r}")
    return value


@dataclass(frozen=True)
class MessageRequest:
    """A chat message in wire form. Immutable once relayed."""
    conversation_id: str
    sender: str
    recipient: str
    content: str
    timestamp: Any

    @classmethod
    def from_payload(cls, payload: Any) -> "MessageRequest":
        if not isinstance(payload, dict):
            raise ProtocolError(f"Message payload must be an object, got {type(payload).__name__}")

        for field in ("conversationId", "from", "to"):
            value = payload.get(field)
            if not isinstance(value, str) or not value:
                raise ProtocolError(f"Message field '{field}' must be a non-empty string")
        if not isinstance(payload.get("content"), str):
            raise ProtocolError("Message field 'content' must be a string")
        if payload.get("timestamp") is None:
            raise ProtocolError("Message field 'timestamp' is required")

        return cls(
            conversation_id=payload["conversationId"],
            sender=payload["from"],
            recipient=payload["to"],
            content=payload["content"],
            timestamp=payload["timestamp"],
        )

    def to_payload(self) -> Dict[str, Any]:
        """Normalized wire form; exactly the five message fields."""
        return {
            "conversationId": self.conversation_id,
            "from": self.sender,
            "to": self.recipient,
            "content": self.content,
            "timestamp": self.timestamp,
        }


### Payload builders

def create_message_error(error: str, original_message: Any) -> Dict[str, Any]:
    """Creates the payload reporting a message that could not be persisted."""
    return {
        "error": error,
        "originalMessage": original_message,
    }


def create_typing_payload(user_id: str, is_typing: bool) -> Dict[str, Any]:
    """Creates the typing indicator relayed to the other room members."""
    return {
        "userId": user_id,
        "isTyping": bool(is_typing),
    }


def create_messages_read_payload(conversation_id: str, user_id: str) -> Dict[str, Any]:
    """Creates the read receipt relayed after a chat is opened."""
    return {
        "conversationId": conversation_id,
        "userId": user_id,
    }
