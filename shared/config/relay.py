"""
Relay configuration loader.

Design rules:
- Import-safe (no side effects)
- JSON-only configuration, defaults applied per key
- Invalid values are rejected, never coerced (startup fails fast)
"""

from __future__ import annotations

import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from shared.chat.events import DEFAULT_EVENT_KINDS, EventKind, SUPPORTED_EVENT_KINDS
from shared.logging.logger import LOG_LEVELS, get_logger

log = get_logger("shared.config.relay")

DEFAULT_CONFIG_PATH = "config.json"
TEMPLATE_PATH = Path(__file__).parent / "relay.example.json"
TOKEN_ENV_VAR = "DISCORD_BOT_TOKEN"

ALLOWED_MENTION_TYPES = ("roles", "users", "everyone")
SESSION_TYPES = ("log", "factory")


class ConfigError(Exception):
    """
    Raised when the configuration document is missing required values or
    carries invalid ones.
    """


class ConfigTemplateCreatedError(ConfigError):
    def __init__(self, config_path: Path):
        super().__init__(
            f"Configuration file not found. A template has been created at "
            f"{config_path}. Update it and rerun the relay."
        )
        self.config_path = config_path


# ------------------------------------------------------------
# Sections
# ------------------------------------------------------------

@dataclass
class CubyzConfig:
    host: str = "127.0.0.1"
    port: int = 47649
    bot_name: str = "Discord"
    version: str = "0.0.0"
    session: str = "log"
    log_path: str = "cubyz/logs/latest.log"
    poll_interval_ms: int = 1000
    session_factory: Optional[str] = None


@dataclass
class ConnectionRetryConfig:
    reconnect: bool = True
    max_retries: int = 0
    retry_delay_ms: int = 30000
    backoff_factor: float = 1.0
    max_retry_delay_ms: int = 300000


@dataclass
class DiscordConfig:
    enabled: bool = True
    token: str = ""
    channel_id: str = ""
    allowed_mentions: List[str] = field(default_factory=list)
    enable_replies: bool = True
    enable_reactions: bool = True
    enable_commands: bool = True


@dataclass
class ListSiteConfig:
    enabled: bool = False
    server_name: str = ""
    server_ip: str = ""
    server_port: Optional[int] = None
    icon_url: str = ""
    custom_client_download_url: str = ""
    api_host: str = "api.ashframe.net"
    api_port: int = 5001


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 10.0


@dataclass
class RelayConfig:
    log_level: str = "info"
    cubyz: CubyzConfig = field(default_factory=CubyzConfig)
    connection: ConnectionRetryConfig = field(default_factory=ConnectionRetryConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    events: List[EventKind] = field(default_factory=lambda: list(DEFAULT_EVENT_KINDS))
    censorlist: List[str] = field(default_factory=list)
    startup_messages: List[str] = field(default_factory=list)
    startup_message_delay_ms: int = 0
    exclude_bot_from_count: bool = True
    excluded_usernames: List[str] = field(default_factory=list)
    cubyzlist_site: ListSiteConfig = field(default_factory=ListSiteConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)


# ------------------------------------------------------------
# Value readers
# ------------------------------------------------------------

def _section(raw: Dict[str, Any], key: str, path: str) -> Dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f'Configuration error: "{path}" must be an object.')
    return value


def _bool(raw: Dict[str, Any], key: str, default: bool, path: str) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f'Configuration error: "{path}" must be a boolean value.')
    return value


def _int(
    raw: Dict[str, Any],
    key: str,
    default: Optional[int],
    path: str,
    *,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> Optional[int]:
    value = raw.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ConfigError(f'Configuration error: "{path}" must be an integer.')
    value = int(value)
    if minimum is not None and value < minimum:
        raise ConfigError(f'Configuration error: "{path}" must be >= {minimum}.')
    if maximum is not None and value > maximum:
        raise ConfigError(f'Configuration error: "{path}" must be <= {maximum}.')
    return value


def _float(raw: Dict[str, Any], key: str, default: float, path: str, *, minimum: float) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f'Configuration error: "{path}" must be a number.')
    if value < minimum:
        raise ConfigError(f'Configuration error: "{path}" must be >= {minimum}.')
    return float(value)


def _str(
    raw: Dict[str, Any],
    key: str,
    default: Optional[str],
    path: str,
    *,
    required: bool = False,
) -> Optional[str]:
    value = raw.get(key, default)
    if value is None:
        if required:
            raise ConfigError(f'Configuration error: "{path}" must be provided.')
        return None
    if not isinstance(value, str):
        raise ConfigError(f'Configuration error: "{path}" must be a string.')
    value = value.strip()
    if required and not value:
        raise ConfigError(f'Configuration error: "{path}" must be a non-empty string.')
    return value


def _str_list(raw: Dict[str, Any], key: str, path: str) -> List[str]:
    value = raw.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(
            f'Configuration error: "{path}" must be an array of non-empty strings.'
        )
    entries: List[str] = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ConfigError(
                f'Configuration error: "{path}" must contain only non-empty strings.'
            )
        entries.append(entry.strip())
    return entries


# ------------------------------------------------------------
# Section loaders
# ------------------------------------------------------------

def _load_cubyz(raw: Dict[str, Any]) -> CubyzConfig:
    defaults = CubyzConfig()
    session = _str(raw, "session", defaults.session, "cubyz.session", required=True)
    if session not in SESSION_TYPES:
        raise ConfigError(
            f'Configuration error: "cubyz.session" must be one of: {", ".join(SESSION_TYPES)}.'
        )

    cfg = CubyzConfig(
        host=_str(raw, "host", defaults.host, "cubyz.host", required=True),
        port=_int(raw, "port", defaults.port, "cubyz.port", minimum=1, maximum=65535),
        bot_name=_str(raw, "bot_name", defaults.bot_name, "cubyz.bot_name", required=True),
        version=_str(raw, "version", defaults.version, "cubyz.version", required=True),
        session=session,
        log_path=_str(raw, "log_path", defaults.log_path, "cubyz.log_path") or "",
        poll_interval_ms=_int(
            raw, "poll_interval_ms", defaults.poll_interval_ms, "cubyz.poll_interval_ms", minimum=50
        ),
        session_factory=_str(raw, "session_factory", None, "cubyz.session_factory") or None,
    )

    if cfg.session == "log" and not cfg.log_path:
        raise ConfigError('Configuration error: "cubyz.log_path" is required for log sessions.')
    if cfg.session == "factory" and (not cfg.session_factory or ":" not in cfg.session_factory):
        raise ConfigError(
            'Configuration error: "cubyz.session_factory" must be a "module:attribute" path.'
        )
    return cfg


def _load_connection(raw: Dict[str, Any]) -> ConnectionRetryConfig:
    defaults = ConnectionRetryConfig()
    return ConnectionRetryConfig(
        reconnect=_bool(raw, "reconnect", defaults.reconnect, "connection.reconnect"),
        max_retries=_int(raw, "max_retries", defaults.max_retries, "connection.max_retries", minimum=0),
        retry_delay_ms=_int(
            raw, "retry_delay_ms", defaults.retry_delay_ms, "connection.retry_delay_ms", minimum=0
        ),
        backoff_factor=_float(
            raw, "backoff_factor", defaults.backoff_factor, "connection.backoff_factor", minimum=1.0
        ),
        max_retry_delay_ms=_int(
            raw,
            "max_retry_delay_ms",
            defaults.max_retry_delay_ms,
            "connection.max_retry_delay_ms",
            minimum=0,
        ),
    )


def _load_discord(raw: Dict[str, Any]) -> DiscordConfig:
    defaults = DiscordConfig()
    enabled = _bool(raw, "enabled", defaults.enabled, "discord.enabled")

    token = _str(raw, "token", "", "discord.token") or os.getenv(TOKEN_ENV_VAR, "").strip()
    channel_id = raw.get("channel_id", "")
    if isinstance(channel_id, int) and not isinstance(channel_id, bool):
        channel_id = str(channel_id)
    if not isinstance(channel_id, str):
        raise ConfigError('Configuration error: "discord.channel_id" must be a string.')
    channel_id = channel_id.strip()

    mentions = _str_list(raw, "allowed_mentions", "discord.allowed_mentions")
    unsupported = [m for m in mentions if m not in ALLOWED_MENTION_TYPES]
    if unsupported:
        raise ConfigError(
            'Configuration error: "discord.allowed_mentions" contains unsupported '
            f'entries: {", ".join(unsupported)}.'
        )

    if enabled:
        if not token:
            raise ConfigError(
                f'Configuration error: "discord.token" must be provided (or set {TOKEN_ENV_VAR}).'
            )
        if not channel_id:
            raise ConfigError('Configuration error: "discord.channel_id" must be provided.')
        if not channel_id.isdigit():
            raise ConfigError('Configuration error: "discord.channel_id" must be a numeric id.')

    return DiscordConfig(
        enabled=enabled,
        token=token,
        channel_id=channel_id,
        allowed_mentions=list(dict.fromkeys(mentions)),
        enable_replies=_bool(raw, "enable_replies", defaults.enable_replies, "discord.enable_replies"),
        enable_reactions=_bool(
            raw, "enable_reactions", defaults.enable_reactions, "discord.enable_reactions"
        ),
        enable_commands=_bool(
            raw, "enable_commands", defaults.enable_commands, "discord.enable_commands"
        ),
    )


def _load_events(raw: Dict[str, Any]) -> List[EventKind]:
    value = raw.get("events")
    if value is None:
        return list(DEFAULT_EVENT_KINDS)
    if not isinstance(value, list) or not value:
        raise ConfigError(
            'Configuration error: "events" must include at least one supported event type.'
        )

    unknown = [str(v) for v in value if not isinstance(v, str) or v not in SUPPORTED_EVENT_KINDS]
    if unknown:
        raise ConfigError(
            f'Configuration error: unsupported event types: {", ".join(unknown)}.'
        )
    return list(dict.fromkeys(EventKind.from_value(v) for v in value))


def _load_list_site(raw: Dict[str, Any]) -> ListSiteConfig:
    defaults = ListSiteConfig()
    enabled = _bool(raw, "enabled", defaults.enabled, "integrations.cubyzlist_site.enabled")
    cfg = ListSiteConfig(
        enabled=enabled,
        server_name=_str(raw, "server_name", "", "integrations.cubyzlist_site.server_name") or "",
        server_ip=_str(raw, "server_ip", "", "integrations.cubyzlist_site.server_ip") or "",
        server_port=_int(
            raw, "server_port", None, "integrations.cubyzlist_site.server_port", minimum=1, maximum=65535
        ),
        icon_url=_str(raw, "icon_url", "", "integrations.cubyzlist_site.icon_url") or "",
        custom_client_download_url=_str(
            raw,
            "custom_client_download_url",
            "",
            "integrations.cubyzlist_site.custom_client_download_url",
        ) or "",
        api_host=_str(raw, "api_host", defaults.api_host, "integrations.cubyzlist_site.api_host", required=True),
        api_port=_int(
            raw, "api_port", defaults.api_port, "integrations.cubyzlist_site.api_port", minimum=1, maximum=65535
        ),
    )
    if enabled and (not cfg.server_name or not cfg.server_ip):
        raise ConfigError(
            'Configuration error: "integrations.cubyzlist_site" requires server_name and server_ip.'
        )
    return cfg


def _load_webhook(raw: Dict[str, Any]) -> WebhookConfig:
    enabled = _bool(raw, "enabled", False, "integrations.webhook.enabled")
    url = _str(raw, "url", "", "integrations.webhook.url") or ""
    if enabled and not url.startswith(("http://", "https://")):
        raise ConfigError('Configuration error: "integrations.webhook.url" must be an http(s) URL.')

    headers_raw = _section(raw, "headers", "integrations.webhook.headers")
    headers: Dict[str, str] = {}
    for name, value in headers_raw.items():
        if not isinstance(value, str):
            raise ConfigError('Configuration error: "integrations.webhook.headers" values must be strings.')
        headers[str(name)] = value

    return WebhookConfig(
        enabled=enabled,
        url=url,
        headers=headers,
        timeout_seconds=_float(
            raw, "timeout_seconds", WebhookConfig.timeout_seconds, "integrations.webhook.timeout_seconds", minimum=0.1
        ),
    )


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------

def parse_config(raw: Dict[str, Any]) -> RelayConfig:
    if not isinstance(raw, dict):
        raise ConfigError("Configuration error: root value must be an object.")

    if "cubyzLogPath" in raw:
        raise ConfigError(
            "Configuration error: detected legacy log-based settings. Update the "
            "configuration file to use the bot connection schema."
        )

    log_level = _str(raw, "log_level", "info", "log_level", required=True).lower()
    if log_level not in LOG_LEVELS:
        raise ConfigError(
            f'Configuration error: "log_level" must be one of: {", ".join(LOG_LEVELS)}.'
        )

    integrations = _section(raw, "integrations", "integrations")

    return RelayConfig(
        log_level=log_level,
        cubyz=_load_cubyz(_section(raw, "cubyz", "cubyz")),
        connection=_load_connection(_section(raw, "connection", "connection")),
        discord=_load_discord(_section(raw, "discord", "discord")),
        events=_load_events(raw),
        censorlist=_str_list(raw, "censorlist", "censorlist"),
        startup_messages=_str_list(raw, "startup_messages", "startup_messages"),
        startup_message_delay_ms=_int(
            raw, "startup_message_delay_ms", 0, "startup_message_delay_ms", minimum=0
        ),
        exclude_bot_from_count=_bool(raw, "exclude_bot_from_count", True, "exclude_bot_from_count"),
        excluded_usernames=_str_list(raw, "excluded_usernames", "excluded_usernames"),
        cubyzlist_site=_load_list_site(
            _section(integrations, "cubyzlist_site", "integrations.cubyzlist_site")
        ),
        webhook=_load_webhook(_section(integrations, "webhook", "integrations.webhook")),
    )


def _ensure_config_file(path: Path) -> None:
    if path.exists():
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(TEMPLATE_PATH, path)
    log.warning(f"Configuration template written to {path}")
    raise ConfigTemplateCreatedError(path)


def load_config(path: Optional[str | Path] = None) -> RelayConfig:
    config_path = Path(path or DEFAULT_CONFIG_PATH).expanduser().resolve()
    _ensure_config_file(config_path)

    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{config_path.name}: invalid JSON ({e})") from e

    config = parse_config(data)
    log.info(f"Loaded relay configuration from {config_path}")
    return config


__all__ = [
    "ConfigError",
    "ConfigTemplateCreatedError",
    "ConnectionRetryConfig",
    "CubyzConfig",
    "DEFAULT_CONFIG_PATH",
    "DiscordConfig",
    "ListSiteConfig",
    "RelayConfig",
    "WebhookConfig",
    "load_config",
    "parse_config",
]
