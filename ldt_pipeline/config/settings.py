"""
Pipeline settings.

Values come from, in increasing precedence: field defaults, an optional
YAML file (path in LDT_CONFIG_FILE or passed explicitly), and environment
variables. Pipeline settings use the LDT_ prefix (LDT_MAX_RETRIES, ...);
database settings use DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD;
logging uses LOG_LEVEL and LOG_FORMAT.

Example YAML:
```yaml
payload_encoding: iso-8859-15
max_retries: 5
retry_base_delay_seconds: 60
owner_directory_file: config/owners.yaml
database:
  host: db.internal
  database: ldt_pipeline
```
"""

import codecs
import os
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ldt_pipeline.core.errors import ConfigurationError

CONFIG_FILE_ENV = "LDT_CONFIG_FILE"
ENV_PREFIX = "LDT_"

# Settings read from unprefixed env vars
_UNPREFIXED_ENV = {
    "log_level": "LOG_LEVEL",
    "log_format": "LOG_FORMAT",
    "metrics_port": "METRICS_PORT",
}

_DATABASE_ENV = {
    "host": "DB_HOST",
    "port": "DB_PORT",
    "database": "DB_NAME",
    "user": "DB_USER",
    "password": "DB_PASSWORD",
    "min_size": "DB_POOL_MIN_SIZE",
    "max_size": "DB_POOL_MAX_SIZE",
}


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection settings.

    The password has no default; DatabaseConnectionPool refuses to open
    without one.
    """

    host: str = "localhost"
    port: int = 5432
    database: str = "ldt_pipeline"
    user: str = "pipeline"
    password: str | None = None
    min_size: int = Field(2, ge=1)
    max_size: int = Field(10, ge=1)

    def pool_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for DatabaseConnectionPool."""
        return self.model_dump()


class PipelineSettings(BaseModel):
    """
    All tunables of the ingestion pipeline.

    Attributes:
        payload_encoding: Encoding used to decode inbound payload bytes
        max_retries: Retry attempts before an entry is permanently failed
        retry_base_delay_seconds: Backoff base delay
        retry_max_delay_seconds: Backoff ceiling
        retry_batch_size: Due entries claimed per retry sweep
        retry_poll_interval_seconds: Sleep between retry sweeps
        record_mapping_file: Optional YAML dispatch table for the assembler
        owner_directory_file: Optional YAML owner list (else the owners table)
        enable_pattern_scan: Whether the resolver may scan raw text
        webhook_secret: HMAC secret; signature checks are off when unset
        signature_tolerance_seconds: Accepted clock skew for X-Timestamp
        allowed_ips: Webhook client allowlist (IPs or CIDR ranges); empty allows all
        log_level: Root log level
        log_format: "json" or "text"
        metrics_port: Port for the standalone retry worker's metrics server
        database: PostgreSQL settings
    """

    payload_encoding: str = "utf-8"
    max_retries: int = Field(5, ge=0)
    retry_base_delay_seconds: float = Field(60.0, gt=0)
    retry_max_delay_seconds: float = Field(3600.0, gt=0)
    retry_batch_size: int = Field(50, ge=1, le=10000)
    retry_poll_interval_seconds: float = Field(30.0, gt=0)
    record_mapping_file: str | None = None
    owner_directory_file: str | None = None
    enable_pattern_scan: bool = True
    webhook_secret: str | None = None
    signature_tolerance_seconds: int = Field(300, ge=0)
    allowed_ips: list[str] = Field(default_factory=list)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    metrics_port: int = 9100
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @field_validator("allowed_ips", mode="before")
    @classmethod
    def split_allowed_ips(cls, v):
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [ip.strip() for ip in v.split(",") if ip.strip()]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("payload_encoding")
    @classmethod
    def check_encoding(cls, v):
        try:
            codecs.lookup(v)
        except LookupError as e:
            raise ValueError(f"Unknown encoding '{v}'") from e
        return v


def _read_yaml(config_file: str | Path) -> dict[str, Any]:
    path = Path(config_file)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {config_file}")
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    return data


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in PipelineSettings.model_fields:
        if name == "database":
            continue
        key = _UNPREFIXED_ENV.get(name, f"{ENV_PREFIX}{name.upper()}")
        if key in env:
            overrides[name] = env[key]

    database = {name: env[key] for name, key in _DATABASE_ENV.items() if key in env}
    if database:
        overrides["database"] = database
    return overrides


def load_settings(
    config_file: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> PipelineSettings:
    """
    Build settings from an optional YAML file and the environment.

    Args:
        config_file: YAML file path (defaults to env var LDT_CONFIG_FILE)
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated PipelineSettings

    Raises:
        ConfigurationError: If the file or any value is invalid
    """
    env = os.environ if env is None else env
    config_file = config_file or env.get(CONFIG_FILE_ENV)

    data: dict[str, Any] = _read_yaml(config_file) if config_file else {}
    overrides = _env_overrides(env)

    database = dict(data.get("database") or {})
    database.update(overrides.pop("database", {}))
    data.update(overrides)
    if database:
        data["database"] = database

    try:
        return PipelineSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid pipeline settings: {e}") from e
