"""Configuration management for the blackhole bot.

Settings are layered: built-in defaults, then the YAML config file, then
``BLACKHOLE_*`` environment variables, then command line overrides applied
by the entry point. ``ConfigManager.settings()`` validates the merged
result into an immutable Settings object.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from core.errors import ConfigError
from storage.file_store import YAMLFileStore

logger = logging.getLogger(__name__)

ENV_PREFIX = "BLACKHOLE_"

DEFAULT_CONFIG: Dict[str, Any] = {
    "slack": {
        "api_token": "",
        # app-level token for Socket Mode (xapp-...)
        "app_token": "",
        # seconds between two API calls, workspace-wide
        "api_interval_seconds": 3,
        "debug": False,
    },
    "deletion": {
        # 0 means "never delete" unless a channel overrides it
        "default_message_ttl": 0,
        "default_file_ttl": 0,
        "dry_run": False,
        "max_retries": 5,
        "backoff_base_seconds": 1,
        "deduplicate": True,
    },
    "reconcile": {
        # full rescan of history and files, in seconds; default hourly
        "interval_seconds": 60 * 60,
        "history_page_size": 200,
    },
    "channels": [],
    "logging": {
        "level": "INFO",
    },
}


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _debug_level(value: str) -> Optional[str]:
    return "DEBUG" if _parse_bool(value) else None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return _parse_bool(value)
    return bool(value)


# env suffix -> (section, key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "SLACK_API_TOKEN": ("slack", "api_token", str),
    "SLACK_APP_TOKEN": ("slack", "app_token", str),
    "SLACK_API_INTERVAL": ("slack", "api_interval_seconds", float),
    "DEBUG_SLACK": ("slack", "debug", _parse_bool),
    "DEFAULT_MESSAGE_TTL": ("deletion", "default_message_ttl", int),
    "DEFAULT_FILE_TTL": ("deletion", "default_file_ttl", int),
    "DRY_RUN": ("deletion", "dry_run", _parse_bool),
    "MAX_RETRIES": ("deletion", "max_retries", int),
    "RECONCILE_INTERVAL": ("reconcile", "interval_seconds", float),
    "LOG_LEVEL": ("logging", "level", str),
    # BLACKHOLE_DEBUG=true wins over BLACKHOLE_LOG_LEVEL; false leaves it alone
    "DEBUG": ("logging", "level", _debug_level),
}


@dataclass(frozen=True)
class ChannelTTLConfig:
    """One ``channels`` entry: TTL overrides for a channel, by name."""
    channel: str
    message_ttl: int = 0
    file_ttl: int = 0


@dataclass(frozen=True)
class Settings:  # pylint: disable=too-many-instance-attributes
    """Validated, read-only view of the configuration."""
    api_token: str
    app_token: str
    api_interval_seconds: float
    debug_slack: bool
    default_message_ttl: int
    default_file_ttl: int
    dry_run: bool
    max_retries: int
    backoff_base_seconds: float
    deduplicate: bool
    reconcile_interval_seconds: float
    history_page_size: int
    channels: Tuple[ChannelTTLConfig, ...]
    log_level: str


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Merge one level deep: mapping sections are merged key by key."""
    merged: Dict[str, Any] = {}
    for key, value in defaults.items():
        merged[key] = dict(value) if isinstance(value, dict) else value
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _parse_channel_entry(raw: Any) -> ChannelTTLConfig:
    if not isinstance(raw, dict) or not raw.get("channel"):
        raise ConfigError(f"Invalid channels entry: {raw!r}")
    try:
        entry = ChannelTTLConfig(
            channel=str(raw["channel"]),
            message_ttl=int(raw.get("message_ttl") or 0),
            file_ttl=int(raw.get("file_ttl") or 0),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid channels entry {raw!r}: {e}") from e
    if entry.message_ttl < 0 or entry.file_ttl < 0:
        raise ConfigError(f"Negative TTL in channels entry: {raw!r}")
    return entry


@dataclass
class ConfigManager:
    """Loads and validates bot configuration.

    Attributes:
        path: Path to the YAML configuration file
        environ: Environment mapping consulted for BLACKHOLE_* overrides
    """
    path: str
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)
    _store: YAMLFileStore = field(init=False)
    _config: Dict[str, Any] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self._store = YAMLFileStore(self.path)

    def load(self) -> Dict[str, Any]:
        """Load configuration from file and environment on top of defaults."""
        if not self._store.exists():
            logger.info("Config file %s not found, using defaults", self.path)
            data: Any = {}
        else:
            data = self._store.read()
            if not isinstance(data, dict):
                logger.warning("Config file %s malformed, using defaults", self.path)
                data = {}

        self._config = _merge(DEFAULT_CONFIG, data)
        self._apply_env()
        return self._config

    def _apply_env(self) -> None:
        for suffix, (section, key, convert) in ENV_OVERRIDES.items():
            env_key = ENV_PREFIX + suffix
            raw = self.environ.get(env_key)
            if raw is None or raw == "":
                continue
            try:
                value = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Cannot set {section}.{key} from environment {env_key}: {e}") from e
            if value is not None:
                self._config[section][key] = value

    def apply_overrides(self, overrides: Dict[str, Dict[str, Any]]) -> None:
        """Apply per-section overrides, skipping None values.

        Args:
            overrides: e.g. ``{"deletion": {"dry_run": True}}``
        """
        for section, values in overrides.items():
            target = self._config.setdefault(section, {})
            for key, value in values.items():
                if value is not None:
                    target[key] = value

    def settings(self) -> Settings:
        """Validate the merged configuration into Settings.

        Raises:
            ConfigError: if any value is missing, mistyped or out of range
        """
        cfg = self._config or self.load()
        slack = cfg.get("slack") or {}
        deletion = cfg.get("deletion") or {}
        reconcile = cfg.get("reconcile") or {}
        log_cfg = cfg.get("logging") or {}
        raw_channels = cfg.get("channels") or []
        if not isinstance(raw_channels, list):
            raise ConfigError("'channels' must be a list")

        try:
            settings = Settings(
                api_token=str(slack.get("api_token") or ""),
                app_token=str(slack.get("app_token") or ""),
                api_interval_seconds=float(slack.get("api_interval_seconds")),
                debug_slack=_as_bool(slack.get("debug")),
                default_message_ttl=int(deletion.get("default_message_ttl") or 0),
                default_file_ttl=int(deletion.get("default_file_ttl") or 0),
                dry_run=_as_bool(deletion.get("dry_run")),
                max_retries=int(deletion.get("max_retries")),
                backoff_base_seconds=float(deletion.get("backoff_base_seconds")),
                deduplicate=_as_bool(deletion.get("deduplicate")),
                reconcile_interval_seconds=float(reconcile.get("interval_seconds")),
                history_page_size=int(reconcile.get("history_page_size")),
                channels=tuple(_parse_channel_entry(c) for c in raw_channels),
                log_level=str(log_cfg.get("level") or "INFO").upper(),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        if settings.api_interval_seconds <= 0:
            raise ConfigError("slack.api_interval_seconds must be positive")
        if settings.max_retries <= 0:
            raise ConfigError("deletion.max_retries must be positive")
        if settings.backoff_base_seconds <= 0:
            raise ConfigError("deletion.backoff_base_seconds must be positive")
        if settings.default_message_ttl < 0 or settings.default_file_ttl < 0:
            raise ConfigError("default TTLs must not be negative")
        if settings.reconcile_interval_seconds <= 0:
            raise ConfigError("reconcile.interval_seconds must be positive")
        if not 1 <= settings.history_page_size <= 1000:
            raise ConfigError("reconcile.history_page_size must be between 1 and 1000")
        if not isinstance(logging.getLevelName(settings.log_level), int):
            raise ConfigError(f"Unknown logging.level {settings.log_level!r}")
        return settings
