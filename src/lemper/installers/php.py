"""
PHP-FPM install / remove plans.

Packages come from the ondrej/php PPA so any supported ``php_version``
can be installed side by side. The FPM master config and the default
``www`` pool are patched key by key, so re-running never duplicates a
setting. FPM is reloaded whenever one of those settings (or a loader
ini) changes in the same run.

Optional ionCube / SourceGuardian loaders are unpacked under
``/usr/lib/php/loaders`` and enabled for both the FPM and CLI SAPIs.
"""

from __future__ import annotations

from typing import Dict, List, NamedTuple

from lemper.engine.actions import command
from lemper.engine.context import ExecutionContext
from lemper.engine.errors import ConfigError
from lemper.engine.plan import FailurePolicy, Plan
from lemper.engine.probes import probe_path
from lemper.engine.step import Step
from lemper.primitives import (
    ensure_apt_repository,
    ensure_command,
    ensure_config_line,
    ensure_directory,
    ensure_file,
    ensure_packages,
    ensure_packages_absent,
    ensure_path_absent,
    ensure_service_reloaded,
    ensure_service_running,
    ensure_service_stopped,
    ensure_symlink,
    shell_step,
)

PHP_PPA = "ppa:ondrej/php"
PHP_ETC_DIR = "/etc/php"
PHP_LOG_DIR = "/var/log/php"
COMPOSER_BIN = "/usr/local/bin/composer"
COMPOSER_SETUP = "/tmp/composer-setup.php"
LOADERS_DIR = "/usr/lib/php/loaders"

PHP_EXTENSIONS = (
    "fpm",
    "cli",
    "common",
    "mysql",
    "curl",
    "gd",
    "mbstring",
    "xml",
    "zip",
    "opcache",
)

# php-fpm.conf: key -> value
FPM_GLOBALS = {
    "emergency_restart_threshold": "10",
    "emergency_restart_interval": "60",
    "process_control_timeout": "10",
}


class PhpLoader(NamedTuple):
    archives: Dict[str, str]
    library: str
    strip_components: int


PHP_LOADERS: Dict[str, PhpLoader] = {
    "ioncube": PhpLoader(
        archives={
            "x86_64": "https://downloads.ioncube.com/loader_downloads/ioncube_loaders_lin_x86-64.tar.gz",
            "x86": "https://downloads.ioncube.com/loader_downloads/ioncube_loaders_lin_x86.tar.gz",
        },
        library="ioncube_loader_lin_{version}.so",
        strip_components=1,
    ),
    "sourceguardian": PhpLoader(
        archives={
            "x86_64": "https://www.sourceguardian.com/loaders/download/loaders.linux-x86_64.tar.gz",
            "x86": "https://www.sourceguardian.com/loaders/download/loaders.linux-x86.tar.gz",
        },
        library="ixed.{version}.lin",
        strip_components=0,
    ),
}

_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
}


def ppa_list_file(release_name: str) -> str:
    return f"/etc/apt/sources.list.d/ondrej-ubuntu-php-{release_name}.list"


def php_packages(version: str) -> List[str]:
    return [f"php{version}-{ext}" for ext in PHP_EXTENSIONS]


def selected_loaders(choice: str) -> List[str]:
    if choice == "all":
        return list(PHP_LOADERS)
    if choice == "none":
        return []
    return [choice]


def loader_archive_url(loader: str, arch: str) -> str:
    """Download URL of ``loader`` for the host architecture."""
    normalized = _ARCH_ALIASES.get(arch)
    if normalized is None:
        raise ConfigError(
            f"No {loader} loader build for architecture '{arch or 'unknown'}'.",
            fields=("php_loader",),
        )
    return PHP_LOADERS[loader].archives[normalized]


def _fpm_steps(version: str, timezone: str) -> List[Step]:
    fpm_dir = f"{PHP_ETC_DIR}/{version}/fpm"
    conf = f"{fpm_dir}/php-fpm.conf"
    pool = f"{fpm_dir}/pool.d/www.conf"
    requires = ("php-packages",)

    steps: List[Step] = [
        ensure_config_line(
            conf, key, value,
            separator=" = ", comment=";",
            name=f"php-fpm-conf:{key}", requires=requires,
        )
        for key, value in FPM_GLOBALS.items()
    ]
    steps.append(
        ensure_config_line(
            conf, "error_log", f"{PHP_LOG_DIR}/php{version}-fpm.log",
            separator=" = ", comment=";",
            name="php-fpm-conf:error_log", requires=requires + ("php-log-dir",),
        )
    )

    pool_settings = {
        "ping.path": "/ping",
        "pm.status_path": "/status",
        "php_admin_value[date.timezone]": timezone,
    }
    for key, value in pool_settings.items():
        steps.append(
            ensure_config_line(
                pool, key, value,
                separator=" = ", comment=";",
                name=f"php-fpm-pool:{key}", requires=requires,
            )
        )
    return steps


def _loader_steps(loader: str, version: str, arch: str) -> List[Step]:
    build = PHP_LOADERS[loader]
    loader_dir = f"{LOADERS_DIR}/{loader}"
    library = f"{loader_dir}/{build.library.format(version=version)}"
    ini = f"{PHP_ETC_DIR}/{version}/mods-available/{loader}.ini"
    url = loader_archive_url(loader, arch)

    steps: List[Step] = [
        # A missing library after unpacking means no build for this PHP version.
        shell_step(
            name=f"php-loader:{loader}",
            probe=lambda: probe_path(library, kind="file"),
            check=lambda s: s.is_present,
            script=(
                f"rm -rf {loader_dir} && mkdir -p {loader_dir} && "
                f"curl -fsSL {url} | tar -xz --strip-components={build.strip_components} -C {loader_dir}"
            ),
            description=f"{loader} loader for PHP {version} unpacked",
        ),
        ensure_file(
            ini,
            f"[{loader}]\nzend_extension={library}\n",
            name=f"php-loader-ini:{loader}",
            requires=("php-packages", f"php-loader:{loader}"),
        ),
    ]
    for sapi in ("fpm", "cli"):
        steps.append(
            ensure_symlink(
                ini,
                f"{PHP_ETC_DIR}/{version}/{sapi}/conf.d/05-{loader}.ini",
                name=f"php-loader-{sapi}:{loader}",
                requires=(f"php-loader-ini:{loader}",),
            )
        )
    return steps


def _composer_step() -> Step:
    return ensure_command(
        "composer",
        install=[
            command("curl", "-sS", "-o", COMPOSER_SETUP, "https://getcomposer.org/installer"),
            command(
                "php", COMPOSER_SETUP,
                "--install-dir=/usr/local/bin", "--filename=composer",
            ),
            command("rm", "-f", COMPOSER_SETUP),
        ],
        name="php-composer",
        requires=("php-packages",),
    )


def fpm_reload_step(version: str, triggered_by: List[str]) -> Step:
    """Reload ``php{version}-fpm`` after a config test when settings changed."""
    return ensure_service_reloaded(
        f"php{version}-fpm",
        triggered_by=triggered_by,
        validate=command(f"php-fpm{version}", "-t"),
        name="php-fpm-reloaded",
        requires=("php-fpm-running",),
    )


def install_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.FAIL_FAST) -> Plan:
    version = ctx.options.php_version
    steps: List[Step] = [
        ensure_packages(["software-properties-common"], name="php-repo-tools"),
        ensure_apt_repository(
            PHP_PPA,
            ppa_list_file(ctx.os_release.release_name),
            name="php-repo",
            requires=("php-repo-tools",),
        ),
        ensure_packages(php_packages(version), name="php-packages", requires=("php-repo",)),
        ensure_directory(PHP_LOG_DIR, name="php-log-dir"),
    ]
    steps.extend(_fpm_steps(version, ctx.options.timezone))
    for loader in selected_loaders(ctx.options.php_loader):
        steps.extend(_loader_steps(loader, version, ctx.os_release.arch))

    config_steps = [
        s.name for s in steps
        if s.name.startswith(("php-fpm-conf:", "php-fpm-pool:", "php-loader-"))
    ]
    steps.append(
        ensure_service_running(f"php{version}-fpm", name="php-fpm-running", requires=("php-packages",))
    )
    steps.append(fpm_reload_step(version, config_steps))
    steps.append(_composer_step())
    return Plan(f"php{version}-install", steps, policy)


def remove_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.CONTINUE) -> Plan:
    version = ctx.options.php_version
    steps: List[Step] = [
        ensure_service_stopped(f"php{version}-fpm", name="php-fpm-stopped"),
        ensure_packages_absent(php_packages(version), name="php-purged"),
    ]
    if ctx.options.auto_remove:
        steps.append(ensure_path_absent(f"{PHP_ETC_DIR}/{version}", name="php-config-removed"))
        steps.append(ensure_path_absent(COMPOSER_BIN, name="php-composer-removed"))
        for loader in PHP_LOADERS:
            steps.append(
                ensure_path_absent(f"{LOADERS_DIR}/{loader}", name=f"php-loader-removed:{loader}")
            )
    return Plan(f"php{version}-remove", steps, policy)
