"""
Centralized configuration for LEMPer.

Uses Pydantic BaseSettings for environment variable integration
and validation. All configurable values should be defined here.

Configuration sources (in order of precedence):
1. Explicit constructor arguments (CLI flags)
2. Environment variables (LEMPER_*)
3. .env file
4. YAML config file passed with ``--config``
5. Default values

Example:
    from lemper.config import get_config

    config = get_config()
    print(config.php_version)  # From LEMPER_PHP_VERSION or default

    # Override at runtime
    config = get_config(dry_run=False, auto_install=True)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lemper.engine.context import InstallerOptions
from lemper.engine.errors import ConfigError
from lemper.engine.plan import FailurePolicy
from lemper.timeouts import COMMAND_DEFAULT_TIMEOUT_S


class LemperConfig(BaseSettings):
    """
    Central configuration for LEMPer.

    All settings can be overridden via environment variables
    prefixed with LEMPER_.

    Example:
        export LEMPER_DRY_RUN=false
        export LEMPER_PHP_VERSION=8.1
    """

    model_config = SettingsConfigDict(
        env_prefix="LEMPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Run mode
    dry_run: bool = Field(
        default=True,
        description="Describe mutations instead of performing them",
    )
    auto_install: bool = Field(
        default=False,
        description="Never prompt; accept defaults for unset options",
    )
    auto_remove: bool = Field(
        default=False,
        description="Also remove configuration and accounts on uninstall",
    )
    allow_unsupported_os: bool = Field(
        default=False,
        description="Run even when the distribution is not recognised",
    )

    # Installer options
    php_version: str = Field(default="7.4", description="PHP version to install")
    php_loader: Literal["none", "ioncube", "sourceguardian", "all"] = Field(
        default="none",
        description="Encoded-PHP loader(s) to enable alongside PHP",
    )
    firewall_engine: Literal["ufw", "none"] = Field(
        default="ufw",
        description="Firewall to configure when securing the server",
    )
    ssh_port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        description="SSH port to move sshd to (prompted if unset)",
    )
    ssh_passwordless: bool = Field(default=False, description="Key-only SSH login")
    ssh_public_key: Optional[str] = Field(default=None, description="Public key for key-only login")
    nginx_installer: Literal["repo", "mainline"] = Field(
        default="repo",
        description="Install nginx from the distribution or from nginx.org mainline",
    )
    timezone: str = Field(default="UTC", description="Server timezone for PHP")
    hostname: str = Field(default="", description="Server hostname")
    username: str = Field(default="lemper", description="Default account name")

    # Plan execution
    failure_policy: Optional[FailurePolicy] = Field(
        default=None,
        description="Override each plan's own failure policy",
    )
    max_failures: int = Field(
        default=0,
        ge=0,
        description="Tolerated failures under the continue policy",
    )
    command_timeout_seconds: Optional[int] = Field(
        default=COMMAND_DEFAULT_TIMEOUT_S,
        ge=1,
        description="Timeout for a single mutating command",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for LEMPer",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Step event log format",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Append step events to this file (e.g. lemper.log)",
    )

    @field_validator("php_version")
    @classmethod
    def validate_php_version(cls, v: str) -> str:
        """Accept ``7.4`` / ``8.1`` style versions; a leading ``php`` is dropped."""
        v = v.strip().lower()
        if v.startswith("php"):
            v = v[3:]
        parts = v.split(".")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"invalid PHP version '{v}', expected MAJOR.MINOR")
        return v

    @field_validator("log_file")
    @classmethod
    def expand_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ and environment variables in paths."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))

    def installer_options(self) -> InstallerOptions:
        """The installer-facing subset of this configuration."""
        return InstallerOptions(
            auto_install=self.auto_install,
            auto_remove=self.auto_remove,
            php_version=self.php_version,
            php_loader=self.php_loader,
            firewall_engine=self.firewall_engine,
            ssh_port=self.ssh_port,
            ssh_passwordless=self.ssh_passwordless,
            ssh_public_key=self.ssh_public_key,
            nginx_installer=self.nginx_installer,
            timezone=self.timezone,
            hostname=self.hostname,
            username=self.username,
        )


def load_yaml_config(path: str | Path) -> Dict[str, Any]:
    """Read a YAML mapping of config values. Keys may use dashes or underscores."""
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


# Global singleton
_config: Optional[LemperConfig] = None


def get_config(config_file: Optional[str | Path] = None, **overrides: Any) -> LemperConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless a config file or overrides are provided.

    YAML values sit below the environment and the .env file: they are only
    used for fields that neither of those sets.

    Raises:
        ConfigError: if any value fails validation
    """
    global _config

    if config_file is None and not overrides and _config is not None:
        return _config

    values: Dict[str, Any] = {}
    try:
        if config_file is not None:
            file_values = load_yaml_config(config_file)
            # Fields populated by LEMPER_* variables or .env
            from_env = LemperConfig().model_fields_set
            values.update({k: v for k, v in file_values.items() if k not in from_env})
        values.update({k: v for k, v in overrides.items() if v is not None})

        _config = LemperConfig(**values)
    except ValidationError as e:
        fields = tuple(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigError(f"Invalid configuration: {e}", fields=fields) from e
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
