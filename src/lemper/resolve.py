"""
Configuration resolution: the only phase that may prompt.

Options the user did not set explicitly (via flag, environment or config
file) are asked for interactively, unless ``auto_install`` is on, in
which case defaults are used silently. The result is frozen into an
``ExecutionContext`` before any plan is built.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import click

from lemper.config import LemperConfig
from lemper.engine.context import (
    ExecutionContext,
    InstallerOptions,
    OSRelease,
    detect_os_release,
    running_as_root,
)
from lemper.engine.errors import ConfigError

logger = logging.getLogger(__name__)

PHP_VERSIONS = ("5.6", "7.0", "7.1", "7.2", "7.3", "7.4", "8.0", "8.1", "8.2", "8.3")
PHP_LOADER_CHOICES = ("none", "ioncube", "sourceguardian", "all")
DEFAULT_SSH_PORT = 2269


def resolve_options(config: LemperConfig, installer: str, remove: bool = False) -> InstallerOptions:
    """
    Turn ``config`` into ``InstallerOptions``, prompting for what is missing.

    Only the options ``installer`` actually uses are asked for.
    """
    options = config.installer_options()
    explicit = config.model_fields_set
    interactive = not config.auto_install
    updates: Dict[str, Any] = {}

    if remove:
        if interactive and "auto_remove" not in explicit:
            updates["auto_remove"] = click.confirm(
                "Also remove configuration files and data?", default=False
            )
        return options.model_copy(update=updates)

    if installer == "nginx" and interactive and "nginx_installer" not in explicit:
        updates["nginx_installer"] = click.prompt(
            "Install nginx from",
            type=click.Choice(["repo", "mainline"]),
            default=options.nginx_installer,
        )

    if installer in ("php", "phalcon") and interactive and "php_version" not in explicit:
        updates["php_version"] = click.prompt(
            "PHP version",
            type=click.Choice(PHP_VERSIONS),
            default=options.php_version,
        )

    if installer == "php" and interactive and "php_loader" not in explicit:
        updates["php_loader"] = click.prompt(
            "PHP loader to enable",
            type=click.Choice(PHP_LOADER_CHOICES),
            default=options.php_loader,
        )

    if installer == "secure":
        if options.ssh_port is None:
            if interactive:
                updates["ssh_port"] = click.prompt(
                    "Custom SSH port (default SSH port is 22)",
                    type=click.IntRange(1, 65535),
                    default=DEFAULT_SSH_PORT,
                )
            else:
                updates["ssh_port"] = DEFAULT_SSH_PORT
        if interactive and "firewall_engine" not in explicit:
            if not click.confirm("Do you want to install a firewall (ufw)?", default=True):
                updates["firewall_engine"] = "none"
        if options.ssh_passwordless and not options.ssh_public_key:
            if not interactive:
                raise ConfigError(
                    "Passwordless SSH needs a public key.", fields=("ssh_public_key",)
                )
            updates["ssh_public_key"] = click.prompt("Paste your public key (ssh-rsa ...)")

    if updates:
        logger.debug("Resolved options interactively: %s", sorted(updates))
    return options.model_copy(update=updates)


def build_context(
    config: LemperConfig,
    options: InstallerOptions,
    os_release: Optional[OSRelease] = None,
    is_root: Optional[bool] = None,
) -> ExecutionContext:
    """Freeze the resolved configuration into an ``ExecutionContext``."""
    return ExecutionContext(
        dry_run=config.dry_run,
        is_root=running_as_root() if is_root is None else is_root,
        os_release=os_release or detect_os_release(),
        options=options,
    )


def confirm_removal(installer: str, config: LemperConfig) -> bool:
    """Ask before a live removal unless running unattended or as a dry run."""
    if config.dry_run or config.auto_install:
        return True
    return click.confirm(f"Are you sure to remove {installer}?", default=False)
