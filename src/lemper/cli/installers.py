"""LEMPer CLI - Install / remove commands, one per stack component."""

import functools
import sys
from typing import Any, Callable, Optional

import click

from lemper.config import get_config
from lemper.engine.context import require_root, require_supported_os
from lemper.engine.errors import LemperError
from lemper.engine.plan import FailurePolicy
from lemper.engine.reporter import exit_code, render_json, render_table, summarize_result
from lemper.engine.runner import CommandRunner
from lemper.installers import INSTALLERS, build_plan
from lemper.logger import StepLogger, configure_logging
from lemper.resolve import build_context, confirm_removal, resolve_options


def installer_options(func: Callable) -> Callable:
    """Options shared by every installer command."""
    decorators = [
        click.option(
            "--install/--remove", " /--uninstall", "install",
            default=True,
            help="Install (default) or remove the component",
        ),
        click.option(
            "--dry-run/--execute", "dry_run",
            default=None,
            help="Only describe what would change (default), or apply it",
        ),
        click.option(
            "--auto-install", "-y", "auto_install",
            is_flag=True,
            help="Do not prompt; use defaults for unset options",
        ),
        click.option(
            "--policy",
            type=click.Choice([p.value for p in FailurePolicy]),
            default=None,
            help="Override the plan's failure policy",
        ),
        click.option(
            "--max-failures",
            type=click.IntRange(min=0),
            default=None,
            help="Failures tolerated under the continue policy",
        ),
        click.option(
            "--format", "output_format",
            type=click.Choice(["table", "json"]),
            default="table",
            help="Report format",
        ),
        click.option("--verbose", "-v", is_flag=True, help="List every action taken"),
        click.option(
            "--config", "config_file",
            type=click.Path(exists=True, dir_okay=False),
            default=None,
            help="YAML configuration file",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def run_installer(
    name: str,
    install: bool,
    dry_run: Optional[bool],
    auto_install: bool,
    policy: Optional[str],
    max_failures: Optional[int],
    output_format: str,
    verbose: bool,
    config_file: Optional[str],
    **overrides: Any,
) -> None:
    """Resolve configuration, run one installer's plan and exit with its status."""
    remove = not install
    try:
        config = get_config(
            config_file,
            dry_run=dry_run,
            auto_install=auto_install or None,
            failure_policy=policy,
            max_failures=max_failures,
            **overrides,
        )
        configure_logging(config.log_level, config.log_file)

        options = resolve_options(config, name, remove=remove)
        ctx = build_context(config, options)
        if not config.allow_unsupported_os:
            require_supported_os(ctx)
        require_root(ctx)

        if remove and not confirm_removal(name, config):
            click.echo("Removal cancelled.")
            sys.exit(0)

        plan = build_plan(name, ctx, remove=remove, policy=config.failure_policy)
        runner = CommandRunner(dry_run=ctx.dry_run, timeout=config.command_timeout_seconds)
        step_logger = StepLogger(plan.name, dry_run=ctx.dry_run, fmt=config.log_format)

        step_logger.log_plan_started(steps=len(plan.steps), policy=plan.policy.value)
        result = plan.run(ctx, runner, on_outcome=step_logger.log_outcome)
        report = summarize_result(result)
        step_logger.log_plan_finished(report)
    except LemperError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if output_format == "json":
        click.echo(render_json(report))
    else:
        click.echo(render_table(report, verbose=verbose))
        if report.dry_run and report.applied_count:
            click.echo()
            click.echo("Dry run: nothing was changed. Re-run with --execute to apply.")

    sys.exit(exit_code(report, plan.policy, config.max_failures))


def _command(name: str) -> Callable:
    def decorate(func: Callable) -> click.Command:
        @functools.wraps(func)
        def wrapper(**kwargs: Any) -> None:
            run_installer(name, **kwargs)

        return click.command(name)(installer_options(wrapper))

    return decorate


@click.option(
    "--installer", "nginx_installer",
    type=click.Choice(["repo", "mainline"]),
    default=None,
    help="Install from the distribution or from nginx.org mainline",
)
@_command("nginx")
def nginx(**kwargs: Any) -> None:
    """Install or remove the Nginx web server."""


@click.option("--php-version", "php_version", default=None, help="PHP version, e.g. 8.1")
@click.option(
    "--loader", "php_loader",
    type=click.Choice(["none", "ioncube", "sourceguardian", "all"]),
    default=None,
    help="PHP loader(s) to enable",
)
@_command("php")
def php(**kwargs: Any) -> None:
    """Install or remove PHP-FPM, Composer and PHP loaders."""


@click.option("--ssh-port", type=click.IntRange(1, 65535), default=None, help="Custom SSH port")
@click.option(
    "--firewall", "firewall_engine",
    type=click.Choice(["ufw", "none"]),
    default=None,
    help="Firewall to configure",
)
@_command("secure")
def secure(**kwargs: Any) -> None:
    """Harden SSH and enable a firewall."""


@_command("cleanup")
def cleanup(**kwargs: Any) -> None:
    """Remove conflicting web servers and unused packages."""


@click.option("--php-version", "php_version", default=None, help="PHP version, e.g. 8.1")
@_command("phalcon")
def phalcon(**kwargs: Any) -> None:
    """Install or remove the Phalcon PHP extension."""


@_command("swap")
def swap(**kwargs: Any) -> None:
    """Create or remove a swap file sized to the host's memory."""


@click.command("list")
def list_installers() -> None:
    """List available installers."""
    for installer in INSTALLERS.values():
        removable = "" if installer.remove else click.style("  (install only)", fg="bright_black")
        click.echo(f"  {click.style(installer.name, fg='cyan'):<20} {installer.description}{removable}")
