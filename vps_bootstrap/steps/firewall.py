"""UFW firewall: deny incoming by default and allow only the configured rules."""

import logging

from ..config import ConfigSnapshot
from ..errors import StepError
from ..probe import StateProbe
from ..registry import Step, StepContext
from ..ui import print_warning

logger = logging.getLogger(__name__)


def firewall_matches(config: ConfigSnapshot, probe: StateProbe) -> bool:
    state = probe.firewall_state()
    return state.active and state.rules == frozenset(config.firewall_ports)


def configure_firewall(ctx: StepContext) -> None:
    config = ctx.config
    ctx.run(["ufw", "--force", "reset"])
    ctx.run(["ufw", "default", "deny", "incoming"])
    ctx.run(["ufw", "default", "allow", "outgoing"])

    if not config.ALLOW_SSH_PUBLIC:
        print_warning(
            "Public SSH is disabled by config. Ensure console/Tailscale access exists."
        )

    for rule in config.firewall_ports:
        ctx.run(["ufw", "allow", rule])
        logger.info(f"Allowed {rule}")

    ctx.run(["ufw", "--force", "enable"])

    status = ctx.run(["ufw", "status", "verbose"], check=False)
    if status.stdout:
        logger.info(status.stdout.strip())

    state = ctx.probe.firewall_state()
    if not state.active:
        raise StepError("UFW is not active after enabling it")


STEPS = [
    Step(
        id="configure_firewall",
        description="Configuring UFW firewall",
        is_satisfied=firewall_matches,
        apply=configure_firewall,
        requires=("install_base_packages",),
    ),
]
