"""
Configuration

Single configuration object for the whole service. It is built once
(YAML file first, then environment overrides) and injected into the store,
the notification channels and the webhook boundary at construction time.
Nothing downstream reads the environment on its own.

Environment variables:
    GROUNDCONTROL_CONFIG           Optional YAML file with any of the fields below
    GROUNDCONTROL_DATA_FILE        JSON document store (unset = in-memory)
    NOTIFICATION_LOG_DIR           Directory for the JSONL delivery log
    SAGE_WEBHOOK_URL               Collaborator webhook for mention/assignment
    TELEGRAM_BOT_TOKEN             Telegram bot token
    TELEGRAM_CHAT_ID               Telegram chat receiving task updates
    GITHUB_WEBHOOK_SECRET          HMAC secret for GitHub deliveries
    TELEGRAM_ACTIVITY_NOTIFICATIONS  "true" to push every activity to Telegram
    NOTIFICATION_POLL_INTERVAL     Seconds between outbox drains
    GROUNDCONTROL_LOG_LEVEL        Logging level name
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger("config")

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_NOTIFICATION_LOG_DIR = "/tmp/groundcontrol/notifications"
DEFAULT_POLL_INTERVAL = 2.0
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 10  # max notifications per window per recipient

ENV_OVERRIDES: Dict[str, str] = {
    "data_file": "GROUNDCONTROL_DATA_FILE",
    "notification_log_dir": "NOTIFICATION_LOG_DIR",
    "collaborator_webhook_url": "SAGE_WEBHOOK_URL",
    "telegram_bot_token": "TELEGRAM_BOT_TOKEN",
    "telegram_chat_id": "TELEGRAM_CHAT_ID",
    "github_webhook_secret": "GITHUB_WEBHOOK_SECRET",
    "telegram_activity_notifications": "TELEGRAM_ACTIVITY_NOTIFICATIONS",
    "notification_poll_interval": "NOTIFICATION_POLL_INTERVAL",
    "rate_limit_window": "NOTIFICATION_RATE_LIMIT_WINDOW",
    "rate_limit_max": "NOTIFICATION_RATE_LIMIT_MAX",
    "log_level": "GROUNDCONTROL_LOG_LEVEL",
}


@dataclass
class GroundControlConfig:
    """Injected service configuration."""
    data_file: Optional[str] = None
    notification_log_dir: str = DEFAULT_NOTIFICATION_LOG_DIR
    collaborator_webhook_url: Optional[str] = None
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    github_webhook_secret: Optional[str] = None
    telegram_activity_notifications: bool = False
    notification_poll_interval: float = DEFAULT_POLL_INTERVAL
    rate_limit_window: int = RATE_LIMIT_WINDOW
    rate_limit_max: int = RATE_LIMIT_MAX
    log_level: str = "INFO"

    @property
    def data_path(self) -> Optional[Path]:
        return Path(self.data_file) if self.data_file else None

    @property
    def notification_log_path(self) -> Path:
        return Path(self.notification_log_dir)

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        """Serialize, hiding secrets unless asked not to."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if redact:
            for key in ("telegram_bot_token", "github_webhook_secret"):
                if data.get(key):
                    data[key] = "***"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroundControlConfig":
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            kwargs[key] = _coerce(known[key].type, value)
        return cls(**kwargs)


def _coerce(field_type: Any, value: Any) -> Any:
    """Coerce string values coming from env/YAML into the field's type."""
    if value is None:
        return None
    type_name = field_type if isinstance(field_type, str) else getattr(field_type, "__name__", "")
    if type_name == "bool" or field_type is bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if type_name == "int" or field_type is int:
        return int(value)
    if type_name == "float" or field_type is float:
        return float(value)
    return str(value) if not isinstance(value, str) else value


def load_yaml_config(path: Path) -> Dict[str, Any]:
    """Read a YAML config file; a missing file yields an empty mapping."""
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> GroundControlConfig:
    """
    Build the service configuration.

    Precedence: environment > YAML file > defaults.
    """
    env = os.environ if environ is None else environ

    if config_file is None and env.get("GROUNDCONTROL_CONFIG"):
        config_file = Path(env["GROUNDCONTROL_CONFIG"])

    data: Dict[str, Any] = {}
    if config_file is not None:
        data.update(load_yaml_config(config_file))

    for field_name, env_name in ENV_OVERRIDES.items():
        if env.get(env_name):
            data[field_name] = env[env_name]

    config = GroundControlConfig.from_dict(data)
    logger.debug(f"Loaded config: {config.to_dict()}")
    return config
