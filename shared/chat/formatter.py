"""
Discord-facing rendering of canonical chat events.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from shared.chat.events import CLIENT_VERSION_ATTRIBUTE, ChatEvent, EventKind
from shared.chat.usernames import strip_color_codes

CENSOR_REPLACEMENT = "||beep||"


def censor_text(text: str, censorlist: Optional[Iterable[str]] = None) -> str:
    """
    Replace every configured word (case-insensitive, whole words only).
    """
    words = [w.strip() for w in (censorlist or []) if isinstance(w, str) and w.strip()]
    if not words or not text:
        return text

    # Longest first so "badword" wins over "bad".
    alternatives = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    pattern = re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", re.IGNORECASE)
    return pattern.sub(CENSOR_REPLACEMENT, text)


def format_message(
    event: ChatEvent,
    censorlist: Optional[Iterable[str]] = None,
) -> str:
    username = event.display_name
    body = censor_text(strip_color_codes(event.text or ""), censorlist)

    if event.kind is EventKind.JOIN:
        return f"👋 **{username} joined the game**"
    if event.kind is EventKind.LEAVE:
        return f"🚪 **{username} left the game**"
    if event.kind is EventKind.DEATH:
        return f"💀 **{username} {body or 'died'}**"
    if event.kind is EventKind.VERSION_MISMATCH:
        version = event.attributes.get(CLIENT_VERSION_ATTRIBUTE) or "unknown"
        return f"⚠️ **{username} uses incompatible client version {version}**"

    return f"**{username}**: {body}"


def should_relay_event(kind: EventKind, enabled_kinds: Iterable[EventKind]) -> bool:
    return kind in set(enabled_kinds)


__all__ = [
    "CENSOR_REPLACEMENT",
    "censor_text",
    "format_message",
    "should_relay_event",
]
