"""
Relay runtime entrypoint.

This module owns:

- event loop creation
- configuration loading (fatal on error)
- lifecycle wiring: sinks, bridge, connection manager
- orderly startup and shutdown
"""

import asyncio
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from core.bridge import RelayBridge
from core.connection import ConnectionManager, RetryPolicy
from core.integrations import IntegrationManager, create_integrations
from services.game.factory import build_session_factory, session_options
from shared.config.relay import DEFAULT_CONFIG_PATH, ConfigError, load_config
from shared.logging.logger import get_logger, set_log_level

log = get_logger("core.app")


# ----------------------------------------------------------------------
# MAIN ASYNC ENTRYPOINT
# ----------------------------------------------------------------------

async def main(stop_event: asyncio.Event, config_path: str = DEFAULT_CONFIG_PATH) -> int:
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")

    try:
        config = load_config(config_path)
        set_log_level(config.log_level)
        session_factory = build_session_factory(config)
    except (ConfigError, ValueError, ImportError) as e:
        log.error(str(e))
        return 1

    log.info("Cubyz relay booting")

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    retry = config.connection
    connection = ConnectionManager(
        options=session_options(config),
        session_factory=session_factory,
        retry=RetryPolicy(
            reconnect=retry.reconnect,
            max_retries=retry.max_retries,
            retry_delay_ms=retry.retry_delay_ms,
            backoff_factor=retry.backoff_factor,
            max_retry_delay_ms=retry.max_retry_delay_ms,
        ),
        exclude_bot_from_count=config.exclude_bot_from_count,
        excluded_usernames=config.excluded_usernames,
    )

    integrations = IntegrationManager(create_integrations(config, connection))
    bridge = RelayBridge(
        connection,
        integrations,
        startup_messages=config.startup_messages,
        startup_message_delay_ms=config.startup_message_delay_ms,
    )

    # --------------------------------------------------
    # START
    # --------------------------------------------------
    await integrations.start_all()
    bridge.start()
    await connection.start()

    _install_quit_key(asyncio.get_running_loop(), stop_event)
    log.info("Relay running (press q to quit)")

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN: CONNECTION FIRST, THEN SINKS
    # --------------------------------------------------
    try:
        await connection.stop()
    except Exception as e:
        log.warning(f"Connection shutdown error ignored: {e}")

    try:
        await bridge.close()
    except Exception as e:
        log.warning(f"Bridge shutdown error ignored: {e}")

    try:
        await integrations.stop_all()
    except Exception as e:
        log.warning(f"Integration shutdown error ignored: {e}")

    log.info("Cubyz relay stopped")
    return 0


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        try:
            loop.call_soon_threadsafe(stop_event.set)
        except RuntimeError:
            stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


def _install_quit_key(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Treat a 'q' keypress on an interactive POSIX terminal as a shutdown
    request. No-op elsewhere.
    """
    if not sys.stdin.isatty():
        return

    try:
        import termios
        import tty
    except ImportError:
        return

    fd = sys.stdin.fileno()
    try:
        saved = termios.tcgetattr(fd)
        tty.setcbreak(fd)
    except termios.error as e:
        log.debug(f"Quit key unavailable: {e}")
        return

    def _restore():
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        except termios.error:
            pass

    def _on_key():
        key = sys.stdin.read(1)
        if key.lower() == "q":
            log.info("Quit key pressed")
            loop.remove_reader(fd)
            _restore()
            stop_event.set()

    try:
        loop.add_reader(fd, _on_key)
    except (NotImplementedError, RuntimeError) as e:
        log.debug(f"Quit key unavailable: {e}")
        _restore()
        return

    async def _restore_on_stop():
        await stop_event.wait()
        loop.remove_reader(fd)
        _restore()

    asyncio.ensure_future(_restore_on_stop())


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run(argv: Optional[list] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    config_path = args[0] if args else DEFAULT_CONFIG_PATH

    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    exit_code = 1
    try:
        exit_code = loop.run_until_complete(main(stop_event, config_path))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")
        exit_code = 0

    except Exception as e:
        log.exception(f"Fatal error: {e}")
        exit_code = 1

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        # --------------------------------------------------
        # FINAL LOOP CLEANUP
        # --------------------------------------------------
        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()

    return exit_code


def main_cli() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main_cli()
