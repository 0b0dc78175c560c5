"""Nginx web server install / remove plans."""

from __future__ import annotations

from typing import List

from lemper.engine.actions import WriteFile, command
from lemper.engine.context import ExecutionContext
from lemper.engine.plan import FailurePolicy, Plan
from lemper.engine.probes import probe_file_content, probe_path
from lemper.engine.step import Step
from lemper.primitives import (
    ensure_directory,
    ensure_file,
    ensure_packages,
    ensure_packages_absent,
    ensure_path_absent,
    ensure_service_reloaded,
    ensure_service_running,
    ensure_service_stopped,
    ensure_symlink,
    module_available,
    shell_step,
)

NGINX_DIR = "/etc/nginx"
MODULES_DIR = "/usr/lib/nginx/modules"
CACHE_DIR = "/var/cache/nginx"
WEB_OWNER = "www-data:root"

# Refuse to (re)load a configuration that fails `nginx -t`.
VALIDATE_CONFIG = command("nginx", "-t")

NGINX_KEYRING = "/usr/share/keyrings/nginx-archive-keyring.gpg"
NGINX_SOURCES_LIST = "/etc/apt/sources.list.d/nginx.list"

# Dynamic module .so -> modules-available conf name.
DYNAMIC_MODULES = {
    "ngx_http_brotli_filter_module.so": "mod-http-brotli-filter.conf",
    "ngx_http_brotli_static_module.so": "mod-http-brotli-static.conf",
    "ngx_http_cache_purge_module.so": "mod-http-cache-purge.conf",
    "ngx_http_geoip_module.so": "mod-http-geoip.conf",
    "ngx_http_image_filter_module.so": "mod-http-image-filter.conf",
    "ngx_mail_module.so": "mod-mail.conf",
    "ngx_http_xslt_filter_module.so": "mod-http-xslt-filter.conf",
    "ngx_pagespeed.so": "mod-pagespeed.conf",
    "ngx_stream_module.so": "mod-stream.conf",
}


def _mainline_repo_steps(ctx: ExecutionContext) -> List[Step]:
    release = ctx.os_release.release_name
    source = (
        f"deb [signed-by={NGINX_KEYRING}] "
        f"http://nginx.org/packages/mainline/ubuntu {release} nginx\n"
    )
    return [
        shell_step(
            name="nginx-signing-key",
            probe=lambda: probe_path(NGINX_KEYRING, kind="file"),
            check=lambda s: s.is_present,
            script=(
                "curl -fsSL https://nginx.org/keys/nginx_signing.key "
                f"| gpg --dearmor -o {NGINX_KEYRING}"
            ),
            description="nginx.org signing key installed",
        ),
        Step(
            name="nginx-mainline-repo",
            probe=lambda: probe_file_content(NGINX_SOURCES_LIST, source),
            check=lambda s: s.is_present,
            apply=lambda snapshot, ctx: [
                WriteFile(path=NGINX_SOURCES_LIST, content=source),
                command("apt-get", "update", "-q"),
            ],
            requires=("nginx-signing-key",),
            description="nginx.org mainline repository configured",
        ),
    ]


def _module_steps() -> List[Step]:
    """Module confs for dynamic modules that are actually built on this host."""
    steps: List[Step] = []
    for so_name, conf_name in DYNAMIC_MODULES.items():
        so_path = f"{MODULES_DIR}/{so_name}"
        if not module_available(so_path):
            continue
        steps.append(
            ensure_file(
                f"{NGINX_DIR}/modules-available/{conf_name}",
                f'load_module "{so_path}";\n',
                name=f"nginx-module:{conf_name}",
                requires=("nginx-dir:modules-available",),
            )
        )
    return steps


def install_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.FAIL_FAST) -> Plan:
    steps: List[Step] = []
    package_requires: tuple = ()
    if ctx.options.nginx_installer == "mainline":
        steps.extend(_mainline_repo_steps(ctx))
        package_requires = ("nginx-mainline-repo",)

    steps.append(ensure_packages(["nginx"], name="nginx-package", requires=package_requires))

    for sub in ("modules-available", "modules-enabled", "sites-available", "sites-enabled"):
        steps.append(
            ensure_directory(f"{NGINX_DIR}/{sub}", name=f"nginx-dir:{sub}", requires=("nginx-package",))
        )

    steps.extend(_module_steps())

    steps.append(
        ensure_symlink(
            f"{NGINX_DIR}/sites-available/default",
            f"{NGINX_DIR}/sites-enabled/01-default",
            name="nginx-default-site",
            requires=("nginx-dir:sites-enabled",),
        )
    )

    for cache in ("", "/fastcgi_cache", "/proxy_cache"):
        path = f"{CACHE_DIR}{cache}"
        steps.append(
            ensure_directory(path, owner=WEB_OWNER, name=f"nginx-cache:{path}")
        )

    config_steps = [
        s.name for s in steps if s.name.startswith("nginx-module:") or s.name == "nginx-default-site"
    ]
    steps.append(
        ensure_service_running(
            "nginx", validate=VALIDATE_CONFIG, name="nginx-running", requires=("nginx-package",)
        )
    )
    steps.append(
        ensure_service_reloaded(
            "nginx",
            triggered_by=config_steps,
            validate=VALIDATE_CONFIG,
            name="nginx-reloaded",
            requires=("nginx-running",),
        )
    )
    return Plan("nginx-install", steps, policy)


def remove_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.CONTINUE) -> Plan:
    steps: List[Step] = [
        ensure_service_stopped("nginx", name="nginx-stopped"),
        ensure_packages_absent(["nginx", "nginx-common", "nginx-core"], name="nginx-purged"),
        ensure_path_absent(CACHE_DIR, name="nginx-cache-removed"),
    ]
    if ctx.options.auto_remove:
        steps.append(ensure_path_absent(NGINX_DIR, name="nginx-config-removed"))
    if ctx.options.nginx_installer == "mainline":
        steps.append(ensure_path_absent(NGINX_SOURCES_LIST, name="nginx-mainline-repo-removed"))
    return Plan("nginx-remove", steps, policy)
