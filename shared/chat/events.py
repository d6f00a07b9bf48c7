"""Canonical Cubyz chat event schema and helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from shared.chat.usernames import normalize


class EventKind(str, Enum):
    JOIN = "join"
    LEAVE = "leave"
    DEATH = "death"
    CHAT = "chat"
    VERSION_MISMATCH = "version-mismatch"

    @classmethod
    def from_value(cls, value: Any) -> "EventKind":
        if isinstance(value, cls):
            return value

        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if normalized == member.value:
                    return member

        raise ValueError(f"Unsupported event kind: {value!r}")


SUPPORTED_EVENT_KINDS = tuple(kind.value for kind in EventKind)
DEFAULT_EVENT_KINDS = (
    EventKind.JOIN,
    EventKind.LEAVE,
    EventKind.DEATH,
    EventKind.CHAT,
)

CLIENT_VERSION_ATTRIBUTE = "clientVersion"
SERVER_VERSION_ATTRIBUTE = "serverVersion"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatEvent:
    kind: EventKind
    raw_display_name: str
    display_name: str
    text: Optional[str] = None
    occurred_at: datetime = field(default_factory=_utc_now)
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind.value,
            "raw_display_name": self.raw_display_name,
            "display_name": self.display_name,
            "occurred_at": self.occurred_at.isoformat().replace("+00:00", "Z"),
        }
        if self.text is not None:
            payload["text"] = self.text
        if self.attributes:
            payload["attributes"] = dict(self.attributes)
        return payload


def create_chat_event(
    kind: EventKind | str,
    raw_display_name: str,
    *,
    text: Optional[str] = None,
    attributes: Optional[Mapping[str, str]] = None,
    occurred_at: Optional[datetime] = None,
) -> ChatEvent:
    """
    Build a ChatEvent, deriving display_name from the raw name.
    """
    raw = str(raw_display_name or "").strip()
    return ChatEvent(
        kind=EventKind.from_value(kind),
        raw_display_name=raw,
        display_name=normalize(raw),
        text=text,
        occurred_at=occurred_at or _utc_now(),
        attributes=dict(attributes or {}),
    )


__all__ = [
    "CLIENT_VERSION_ATTRIBUTE",
    "ChatEvent",
    "DEFAULT_EVENT_KINDS",
    "EventKind",
    "SERVER_VERSION_ATTRIBUTE",
    "SUPPORTED_EVENT_KINDS",
    "create_chat_event",
]
