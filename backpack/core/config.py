"""
Backpack configuration

Settings are resolved in three layers:
- dataclass defaults
- optional YAML file (path in BACKPACK_CONFIG)
- environment variables
"""
import os
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

# Environment variable -> settings field
ENV_VARS = {
    "SERVER_URL": "server_url",
    "HOST": "host",
    "PORT": "port",
    "DATABASE_URL": "database_url",
    "REDIS_URL": "redis_url",
    "API_KEY_HEADER": "api_key_header",
    "SESSION_MAX_AGE": "session_max_age",
    "OAUTH_TOKEN_TTL": "oauth_token_ttl",
    "MIN_PASSWORD_LENGTH": "min_password_length",
    "LOGIN_MAX_FAILURES": "login_max_failures",
    "LOGIN_LOCKOUT_SECONDS": "login_lockout_seconds",
    "LOG_LEVEL": "log_level",
}


@dataclass
class Settings:
    server_url: str = ""
    host: str = "0.0.0.0"
    port: int = 8787
    database_url: str = ""
    redis_url: str = ""
    api_key_header: str = "X-Backpack-API-Key"
    session_max_age: int = 2592000  # 30 days
    oauth_token_ttl: int = 3600  # 1 hour
    min_password_length: int = 8
    login_max_failures: int = 5
    login_lockout_seconds: int = 900
    log_level: str = "INFO"

    @classmethod
    def load(cls, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from defaults, a YAML file and the environment."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        config_path = config_path or environ.get("BACKPACK_CONFIG")
        if config_path:
            values.update(load_yaml(Path(config_path)))

        for env_name, field_name in ENV_VARS.items():
            if env_name in environ:
                values[field_name] = environ[env_name]

        return cls.from_dict(values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create settings from a dict, coercing values to the field types."""
        known = {f.name: f for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown setting: {key}")
                continue
            default = known[key].default
            kwargs[key] = int(value) if isinstance(default, int) else str(value)
        return cls(**kwargs)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a flat mapping of settings from a YAML file."""
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    with open(path) as fp:
        data = yaml.safe_load(fp) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )
