"""
Installer registry.

Each installer turns an ``ExecutionContext`` into a ``Plan`` for one
concern of the stack. The CLI looks installers up by name.

Usage::

    from lemper.installers import build_plan

    plan = build_plan("nginx", ctx, remove=False)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from lemper.engine.context import ExecutionContext
from lemper.engine.errors import ConfigError
from lemper.engine.plan import FailurePolicy, Plan
from lemper.installers import cleanup, nginx, phalcon, php, secure, swap

PlanBuilder = Callable[..., Plan]


@dataclass(frozen=True)
class Installer:
    name: str
    install: PlanBuilder
    remove: Optional[PlanBuilder] = None
    description: str = ""


INSTALLERS: Dict[str, Installer] = {
    "nginx": Installer("nginx", nginx.install_plan, nginx.remove_plan, "Nginx web server"),
    "php": Installer("php", php.install_plan, php.remove_plan, "PHP-FPM, Composer and PHP loaders"),
    "secure": Installer("secure", secure.install_plan, secure.remove_plan, "SSH and firewall hardening"),
    "cleanup": Installer("cleanup", cleanup.install_plan, None, "Remove conflicting packages"),
    "phalcon": Installer("phalcon", phalcon.install_plan, phalcon.remove_plan, "Phalcon PHP extension"),
    "swap": Installer("swap", swap.install_plan, swap.remove_plan, "Swap file sized to RAM"),
}


def installer_names() -> List[str]:
    return list(INSTALLERS)


def get_installer(name: str) -> Installer:
    try:
        return INSTALLERS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown installer '{name}'. Available: {', '.join(INSTALLERS)}"
        ) from None


def build_plan(
    name: str,
    ctx: ExecutionContext,
    remove: bool = False,
    policy: Optional[FailurePolicy] = None,
) -> Plan:
    """Build the install (or remove) plan for installer ``name``.

    ``policy`` overrides the installer's default failure policy.
    """
    installer = get_installer(name)
    builder = installer.remove if remove else installer.install
    if builder is None:
        raise ConfigError(f"Installer '{name}' has no remove plan.")
    plan = builder(ctx)
    if policy is not None:
        plan = plan.with_policy(FailurePolicy(policy))
    return plan
