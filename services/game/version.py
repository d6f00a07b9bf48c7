from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

VERSION_PATTERN = re.compile(r"Starting game client with version\s+(\S+)")


def read_server_version(log_path: str | Path) -> Optional[str]:
    """
    Return the version from the server's startup banner, or None when the
    log is missing or carries no banner.
    """
    path = Path(log_path)
    try:
        with path.open("r", encoding="utf-8", errors="replace") as f:
            for line in f:
                match = VERSION_PATTERN.search(line)
                if match:
                    return match.group(1).rstrip(".")
    except OSError:
        return None
    return None


__all__ = ["read_server_version"]
