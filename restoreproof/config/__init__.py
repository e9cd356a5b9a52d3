"""Configuration management for restoreproof."""

from restoreproof.config.loader import Config, load_config, validate_run_config
from restoreproof.config.secrets import load_environment_secrets

__all__ = ["Config", "load_config", "load_environment_secrets", "validate_run_config"]
