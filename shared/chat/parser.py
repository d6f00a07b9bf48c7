"""
Cubyz chat line parser.

Two input shapes reach the relay:

- raw protocol chat strings ("[Alice] hi", "Bob joined", "Carl died of ...")
- server log lines, where the same payload sits behind a log-level prefix
  ("[info]: Chat: Bob left")

Both end up in parse_chat_message(). Unrecognized input yields None and is
silently ignored by callers.
"""

from __future__ import annotations

import re
from typing import Optional

from shared.chat.events import (
    CLIENT_VERSION_ATTRIBUTE,
    ChatEvent,
    EventKind,
    create_chat_event,
)

# Patterns are tried in this order; the first match wins.
CHAT_PATTERN = re.compile(r"^\[(.+?)\]\s*(.*)$", re.DOTALL)
JOIN_PATTERN = re.compile(r"^(.+?) joined(?: using version (.+?))?\.?$")
LEAVE_PATTERN = re.compile(r"^(.+?) left$")
DEATH_PATTERN = re.compile(r"^(.+?) died(.*)$", re.DOTALL)

LOG_CHAT_PATTERN = re.compile(
    r"\[info\]:\s*(?:User \[info\]:\s*)?Chat:\s*(.+)", re.IGNORECASE
)
LOG_USER_JOIN_PATTERN = re.compile(
    r"\[info\]:\s*User\s+(.+?\s+joined\s+using\s+version\s+.+?)\s*$",
    re.IGNORECASE,
)


def parse_chat_message(message: str) -> Optional[ChatEvent]:
    """
    Convert one raw chat string into a ChatEvent, or None.
    """
    if not isinstance(message, str) or not message:
        return None

    chat_match = CHAT_PATTERN.match(message)
    if chat_match:
        return create_chat_event(
            EventKind.CHAT,
            chat_match.group(1),
            text=chat_match.group(2).strip(),
        )

    join_match = JOIN_PATTERN.match(message)
    if join_match:
        attributes = {}
        version = (join_match.group(2) or "").strip().rstrip(".")
        if version:
            attributes[CLIENT_VERSION_ATTRIBUTE] = version
        return create_chat_event(
            EventKind.JOIN,
            join_match.group(1),
            attributes=attributes,
        )

    leave_match = LEAVE_PATTERN.match(message)
    if leave_match:
        return create_chat_event(EventKind.LEAVE, leave_match.group(1))

    death_match = DEATH_PATTERN.match(message)
    if death_match:
        return create_chat_event(
            EventKind.DEATH,
            death_match.group(1),
            text=f"died{death_match.group(2)}".strip(),
        )

    return None


def extract_log_payload(raw_line: str) -> Optional[str]:
    """
    Pull the chat payload out of a server log line.

    Joins are only taken from the versioned "User ... joined using version"
    lines; the plain "Chat: X joined" echo of the same join is dropped so a
    join is never counted twice.
    """
    if not isinstance(raw_line, str):
        return None

    chat_match = LOG_CHAT_PATTERN.search(raw_line)
    if chat_match:
        payload = chat_match.group(1).strip()
        if not payload or JOIN_PATTERN.match(payload):
            return None
        return payload

    user_match = LOG_USER_JOIN_PATTERN.search(raw_line)
    if user_match:
        return user_match.group(1).strip()

    return None


def parse_chat_line(raw_line: str) -> Optional[ChatEvent]:
    """
    Parse a server log line into a ChatEvent, or None.
    """
    payload = extract_log_payload(raw_line)
    if payload is None:
        return None
    return parse_chat_message(payload)


__all__ = [
    "extract_log_payload",
    "parse_chat_line",
    "parse_chat_message",
]
