"""
Configuration management and loading.

Handles refill job settings from YAML and secrets from environment variables.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import yaml

AUDIT_TOKEN_ENV = "QUOTA_REFILL_AUDIT_TOKEN"


class AuditSinkType(Enum):
    """Where audit events are delivered."""
    HTTP = "http"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class DatabaseConfig:
    """Key store location and read batching."""
    path: str = "quota_refill.db"
    batch_size: int = 500

    def __post_init__(self):
        """Validate database values."""
        if not self.path:
            raise ValueError("database path cannot be empty")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")


@dataclass(frozen=True)
class AuditConfig:
    """Audit ingestion settings.

    actor_id labels the system actor on refill events; the actor type is
    always "system".
    """
    sink: AuditSinkType = AuditSinkType.HTTP
    url: str = "https://api.tinybird.co"
    datasource: str = "audit_logs"
    timeout: float = 5.0
    actor_id: str = "trigger"
    location: str = "trigger"

    def __post_init__(self):
        """Validate audit values."""
        if self.timeout <= 0:
            raise ValueError("audit timeout must be > 0")
        if not self.actor_id:
            raise ValueError("actor_id cannot be empty")
        if self.sink == AuditSinkType.HTTP and not self.url:
            raise ValueError("audit url is required for the http sink")


@dataclass(frozen=True)
class RefillConfig:
    """Complete refill job configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


def default_refill_config() -> RefillConfig:
    """Configuration used when no file is given."""
    return RefillConfig()


def get_audit_token(env: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Read the audit ingestion token from the environment."""
    env = os.environ if env is None else env
    return env.get(AUDIT_TOKEN_ENV) or None


def require_audit_token(config: RefillConfig, env: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Return the audit token, failing when the HTTP sink needs one.

    Raises:
        ValueError: If the HTTP sink is configured and the token is unset
    """
    token = get_audit_token(env)
    if config.audit.sink == AuditSinkType.HTTP and not token:
        raise ValueError(f"{AUDIT_TOKEN_ENV} must be set when audit sink is 'http'")
    return token


def load_refill_config(path: str) -> RefillConfig:
    """Load and validate refill configuration from YAML file.

    Strict validation ensures a typo in a key is reported instead of
    silently falling back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated RefillConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Refill config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'database', 'audit'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database = _parse_database_config(raw_config.get('database', {}))
    audit = _parse_audit_config(raw_config.get('audit', {}))

    return RefillConfig(database=database, audit=audit)


def _require_section(data, name: str) -> Dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _parse_database_config(data) -> DatabaseConfig:
    """Parse and validate the database section.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _require_section(data, "database")
    allowed_keys = {'path', 'batch_size'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in database: {unknown_keys}")

    defaults = DatabaseConfig()
    path = data.get('path', defaults.path)
    if not isinstance(path, str) or not path:
        raise ValueError("'path' in database must be a non-empty string")

    batch_size = data.get('batch_size', defaults.batch_size)
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise ValueError("'batch_size' in database must be a positive integer")

    return DatabaseConfig(path=path, batch_size=batch_size)


def _parse_audit_config(data) -> AuditConfig:
    """Parse and validate the audit section.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _require_section(data, "audit")
    allowed_keys = {'sink', 'url', 'datasource', 'timeout', 'actor_id', 'location'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in audit: {unknown_keys}")

    defaults = AuditConfig()

    sink_str = data.get('sink', defaults.sink.value)
    if not isinstance(sink_str, str):
        raise ValueError("'sink' in audit must be a string")
    try:
        sink = AuditSinkType(sink_str.lower())
    except ValueError:
        valid_sinks = [sink.value for sink in AuditSinkType]
        raise ValueError(f"'sink' in audit must be one of: {valid_sinks}")

    timeout = data.get('timeout', defaults.timeout)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError("'timeout' in audit must be > 0")

    strings = {}
    for name in ('url', 'datasource', 'actor_id', 'location'):
        value = data.get(name, getattr(defaults, name))
        if not isinstance(value, str) or not value:
            raise ValueError(f"'{name}' in audit must be a non-empty string")
        strings[name] = value

    return AuditConfig(sink=sink, timeout=float(timeout), **strings)
