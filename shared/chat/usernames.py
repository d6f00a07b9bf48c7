"""
Cubyz username normalization.

Display names arrive with inline colour codes (``#RRGGBB``, optionally
prefixed by the section marker ``§``) and markdown-style decoration. The
relay compares and prints names only after they have been reduced to
letters, digits, underscore, hyphen and space.

Some clients colour every character of a name separately
(``#6A5ACDM#8A2BE2e#9932CCr``). Those runs are rebuilt from their payload
characters instead of being stripped like decoration.
"""

from __future__ import annotations

import re
from typing import List

# "ยง" is how "§" reads when the log is decoded with a Thai code page.
_SECTION_MARKER = r"(?:§|ยง)"
_COLOR_CODE = rf"{_SECTION_MARKER}?#[0-9A-Fa-f]{{6}}"

COLOR_CODE_PATTERN = re.compile(_COLOR_CODE)
PER_CHARACTER_RUN_PATTERN = re.compile(rf"(?:{_COLOR_CODE}[^#§]){{2,}}")
DECORATION_PATTERN = re.compile(r"[*~_\[\]]")
DISALLOWED_PATTERN = re.compile(r"[^\w\- ]")


def strip_color_codes(text: str) -> str:
    return COLOR_CODE_PATTERN.sub("", text or "")


def _strip_markup(segment: str) -> str:
    segment = strip_color_codes(segment)
    return DECORATION_PATTERN.sub("", segment)


def normalize(raw: str) -> str:
    """
    Reduce a raw Cubyz display name to a clean, comparable string.

    Never raises; malformed input yields an empty or partially stripped
    result.
    """
    if not isinstance(raw, str) or not raw:
        return ""

    pieces: List[str] = []
    cursor = 0

    for run in PER_CHARACTER_RUN_PATTERN.finditer(raw):
        pieces.append(_strip_markup(raw[cursor:run.start()]))
        pieces.append(strip_color_codes(run.group(0)))
        cursor = run.end()

    pieces.append(_strip_markup(raw[cursor:]))

    return DISALLOWED_PATTERN.sub("", "".join(pieces)).strip()


def normalized_key(raw: str) -> str:
    """
    Case-folded form used for membership and exclusion checks.
    """
    return normalize(raw).casefold()


__all__ = [
    "COLOR_CODE_PATTERN",
    "normalize",
    "normalized_key",
    "strip_color_codes",
]
