"""Configuration loader for restoreproof.

Loads configuration from YAML files and environment variables.
Environment variables override YAML values using the RESTOREPROOF_ prefix.
Nested keys use double underscores: RESTOREPROOF_RECOVERY__MAX_CONCURRENT_VMS=5
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from restoreproof.core.errors import ConfigurationError
from restoreproof.models.session import RecoveryStrategy


class ServerConfig(BaseModel):
    """Connection settings for one control plane."""

    url: str = Field(default="")
    username: str = Field(default="")
    password: str | None = Field(default=None, repr=False)
    verify_tls: bool = Field(default=True)
    timeout: float = Field(default=30.0, gt=0, le=600)


class BackupServerConfig(ServerConfig):
    """Backup server (recovery control + catalog) settings."""

    api_version: str = Field(default="1.1-rev2")


class ApiConfig(BaseModel):
    """API client retry and token settings."""

    retry_profile: str = Field(
        default="balanced", pattern="^(conservative|balanced|aggressive)$"
    )
    backoff_cap_seconds: float = Field(default=30.0, gt=0, le=300)
    token_refresh_margin_seconds: int = Field(default=300, ge=0, le=3600)


class ScopeConfig(BaseModel):
    """Which jobs and workloads a run covers, and how they are grouped."""

    jobs: list[str] = Field(default_factory=list, description="Job names or patterns")
    workloads: list[str] = Field(default_factory=list, description="Workload names or patterns")
    groups: dict[int, list[str]] = Field(
        default_factory=dict, description="Ordered recovery groups: key -> workload names"
    )


class RecoveryConfig(BaseModel):
    """Recovery execution settings."""

    strategy: RecoveryStrategy = Field(default=RecoveryStrategy.MOUNT)
    max_concurrent_vms: int = Field(default=3, ge=1, le=50)
    isolated_network: str = Field(default="")
    isolated_segment_id: str | None = Field(default=None)
    storage_target: str | None = Field(default=None, description="Datastore for full-copy restores")
    name_prefix: str = Field(default="Verify_")
    discovery_timeout_seconds: float = Field(default=300.0, gt=0)
    power_timeout_seconds: float = Field(default=120.0, gt=0)
    restore_timeout_seconds: float = Field(default=3600.0, gt=0)
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    locate_attempts: int = Field(default=6, ge=1, le=60)


class VerificationConfig(BaseModel):
    """Verification test battery settings."""

    heartbeat_timeout_seconds: float = Field(default=300.0, gt=0)
    ip_timeout_seconds: float = Field(default=300.0, gt=0)
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    ping: bool = Field(default=True)
    ping_attempts: int = Field(default=3, ge=1, le=20)
    tcp_ports: list[int] = Field(default_factory=list)
    tcp_timeout_seconds: float = Field(default=5.0, gt=0)
    dns: bool = Field(default=False)
    http_urls: list[str] = Field(default_factory=list)
    http_timeout_seconds: float = Field(default=10.0, gt=0)
    http_verify_tls: bool = Field(default=False)
    mysql: bool = Field(default=False)
    mysql_port: int = Field(default=3306, ge=1, le=65535)
    custom_probe: str | None = Field(default=None, description="module:function import path")


class PreflightConfig(BaseModel):
    """Preflight thresholds."""

    max_restore_point_age_days: float = Field(default=7.0, gt=0)


class ScoringConfig(BaseModel):
    """Compliance score inputs that are not derived from the run."""

    rto_target_minutes: float | None = Field(default=None, gt=0)
    automated: bool = Field(default=False)
    known_workloads: int | None = Field(default=None, ge=0)
    known_platforms: int | None = Field(default=None, ge=0)


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="readable", pattern="^(readable|json)$")


class Config(BaseModel):
    """Root configuration model."""

    backup: BackupServerConfig = Field(default_factory=BackupServerConfig)
    hypervisor: ServerConfig = Field(default_factory=ServerConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    scope: ScopeConfig = Field(default_factory=ScopeConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    preflight: PreflightConfig = Field(default_factory=PreflightConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _get_env_value(key: str) -> str | None:
    """Get environment variable with RESTOREPROOF_ prefix."""
    env_key = f"RESTOREPROOF_{key.upper()}"
    return os.environ.get(env_key)


def _convert_list(env_value: str, original: list[Any]) -> list[Any]:
    items = [item.strip() for item in env_value.split(",") if item.strip()]
    if original and all(isinstance(v, int) for v in original):
        return [int(item) for item in items]
    return items


def _apply_env_overrides(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Apply environment variable overrides to config data.

    Environment variables use RESTOREPROOF_ prefix with double underscores for
    nesting. Example: RESTOREPROOF_RECOVERY__STRATEGY=full_copy sets
    recovery.strategy. Lists are given comma-separated.
    """
    result = data.copy()

    for key, value in result.items():
        env_key = f"{prefix}__{key}" if prefix else str(key)

        if isinstance(value, dict):
            result[key] = _apply_env_overrides(value, env_key)
        else:
            env_value = _get_env_value(env_key)
            if env_value is not None:
                # Convert to appropriate type based on original value
                if isinstance(value, bool):
                    result[key] = env_value.lower() in ("true", "1", "yes")
                elif isinstance(value, int):
                    result[key] = int(env_value)
                elif isinstance(value, float):
                    result[key] = float(env_value)
                elif isinstance(value, list):
                    result[key] = _convert_list(env_value, value)
                else:
                    result[key] = env_value

    return result


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default.yaml.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If config values are invalid.
    """
    if config_path is None:
        project_root = Path(__file__).parent.parent.parent
        config_path = project_root / "configs" / "default.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    data = _apply_env_overrides(data)

    return Config.model_validate(data)


def get_default_config() -> Config:
    """Get default configuration without loading from file."""
    return Config()


def _recovery_problems(recovery: RecoveryConfig) -> list[str]:
    problems = []
    if not recovery.isolated_network.strip():
        problems.append("recovery.isolated_network is required")
    if recovery.strategy == RecoveryStrategy.FULL_COPY and not recovery.storage_target:
        problems.append("recovery.storage_target is required for the full_copy strategy")
    return problems


def validate_recovery_config(recovery: RecoveryConfig) -> None:
    """Reject recovery settings the selected strategy cannot run with."""
    problems = _recovery_problems(recovery)
    if problems:
        raise ConfigurationError("; ".join(problems))


def validate_run_config(config: Config) -> None:
    """Reject configurations that cannot start a run.

    Runs before any remote call so that configuration errors never leave
    side effects behind.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    problems = []
    if not config.backup.url:
        problems.append("backup.url is required")
    if not config.hypervisor.url:
        problems.append("hypervisor.url is required")
    problems.extend(_recovery_problems(config.recovery))
    for name, server in (("backup", config.backup), ("hypervisor", config.hypervisor)):
        if not server.username or not server.password:
            problems.append(f"{name}.username and {name}.password are required")
    for url in config.verification.http_urls:
        if not url.lower().startswith(("http://", "https://")):
            problems.append(f"verification.http_urls entry is not an http(s) URL: {url}")
    if config.verification.custom_probe and ":" not in config.verification.custom_probe:
        problems.append("verification.custom_probe must be a 'module:function' path")
    if problems:
        raise ConfigurationError("; ".join(problems))
