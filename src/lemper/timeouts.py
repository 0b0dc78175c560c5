"""
Timeout constants for LEMPer.

Centralizes timeout values so probes and actions agree on them and they
can be tuned in one place.
"""

from __future__ import annotations

# =============================================================================
# Probe Timeouts
# =============================================================================

# Read-only state queries (dpkg-query, systemctl is-active, pgrep, --version)
PROBE_TIMEOUT_S = 15

# =============================================================================
# Action Timeouts
# =============================================================================

# Default upper bound for a single mutating command; None disables it.
# Package installs on a slow mirror can take many minutes.
COMMAND_DEFAULT_TIMEOUT_S = 1800
