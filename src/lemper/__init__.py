"""
LEMPer - Idempotent provisioning of a LEMP stack on Ubuntu servers.

Every change to the machine is a Step: probe the current state, decide
whether it already matches the desired state, and only then act. Steps
are grouped into Plans with an explicit failure policy, and all
mutations go through a single CommandRunner that can run dry.

Key Features:
- Re-running an installer on a configured host changes nothing
- Dry-run mode describes every command without executing it
- Fail-fast or continue-and-collect failure policies per plan
- Structured step logs and OpenTelemetry spans per plan and step

Example usage:
    from lemper import CommandRunner, ExecutionContext, build_plan

    ctx = ExecutionContext(dry_run=True)
    plan = build_plan("nginx", ctx)
    result = plan.run(ctx, CommandRunner(dry_run=True))
"""

__version__ = "0.1.0"
__all__ = [
    "Step",
    "Plan",
    "CommandRunner",
    "ExecutionContext",
    "build_plan",
    "get_config",
    "__version__",
]


# Lazy imports to keep `lemper --version` fast
def __getattr__(name: str):
    if name in ("Step", "Plan", "CommandRunner", "ExecutionContext"):
        from lemper import engine
        return getattr(engine, name)
    if name == "build_plan":
        from lemper.installers import build_plan
        return build_plan
    if name == "get_config":
        from lemper.config import get_config
        return get_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
