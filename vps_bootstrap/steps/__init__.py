"""
The provisioning step library.

``build_registry`` assembles every step in its fixed execution order. Steps
switched off by config stay in the registry and are reported as skipped.
"""

from typing import List

from ..config import ConfigSnapshot
from ..registry import Step, StepRegistry
from . import accounts, firewall, node, services, shell, ssh, system


def ordered_steps(config: ConfigSnapshot) -> List[Step]:
    return [
        *system.STEPS,
        *accounts.STEPS,
        *services.STEPS,
        *firewall.STEPS,
        *services.FAIL2BAN_STEPS,
        *services.TAILSCALE_STEPS,
        *node.STEPS,
        *node.ai_cli_steps(config),
        *shell.STEPS,
        *ssh.STEPS,
    ]


def build_registry(config: ConfigSnapshot) -> StepRegistry:
    """Return the validated registry for one config snapshot."""
    return StepRegistry(ordered_steps(config))


__all__ = ["build_registry", "ordered_steps"]
