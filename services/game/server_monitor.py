"""
Local Cubyz server liveness probe.

Cubyz listens on UDP. If the port can be bound locally, nothing is
serving it.
"""

from __future__ import annotations

import asyncio
import errno
import socket

from shared.logging.logger import get_logger

log = get_logger("game.server_monitor")


def _probe(port: int) -> bool:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind(("0.0.0.0", port))
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            return True
        log.warning(f"Unexpected error probing UDP port {port}: {e}")
        return False
    finally:
        sock.close()
    return False


async def is_server_online(port: int) -> bool:
    return await asyncio.to_thread(_probe, port)


__all__ = ["is_server_online"]
