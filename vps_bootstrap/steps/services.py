"""Docker, fail2ban and Tailscale."""

import logging

from ..command import run_installer_script
from ..config import ConfigSnapshot
from ..errors import StepError
from ..probe import StateProbe
from ..registry import Step, StepContext

logger = logging.getLogger(__name__)

DOCKER_INSTALL_URL: str = "https://get.docker.com"
TAILSCALE_INSTALL_URL: str = "https://tailscale.com/install.sh"


def _service_running(probe: StateProbe, name: str) -> bool:
    return probe.service_enabled(name) and probe.service_active(name)


def _install_from_script(ctx: StepContext, url: str, binary: str) -> None:
    logger.info(f"Installing {binary} from {url}")
    run_installer_script(url, runner=ctx.runner, timeout=ctx.config.COMMAND_TIMEOUT)
    if not ctx.probe.command_exists(binary):
        raise StepError(f"{binary} not found after running {url}")


# ----------------------------------------------------------------
# Docker
# ----------------------------------------------------------------
def docker_installed(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.command_exists("docker")


def install_docker(ctx: StepContext) -> None:
    _install_from_script(ctx, DOCKER_INSTALL_URL, "docker")


def in_docker_group(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.user_in_group(config.USERNAME, "docker")


def add_to_docker_group(ctx: StepContext) -> None:
    ctx.run(["usermod", "-aG", "docker", ctx.config.USERNAME])


# ----------------------------------------------------------------
# fail2ban
# ----------------------------------------------------------------
def fail2ban_running(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return _service_running(probe, "fail2ban")


def enable_fail2ban(ctx: StepContext) -> None:
    ctx.run(["systemctl", "enable", "--now", "fail2ban"])


# ----------------------------------------------------------------
# Tailscale
# ----------------------------------------------------------------
def tailscale_installed(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.command_exists("tailscale")


def install_tailscale(ctx: StepContext) -> None:
    _install_from_script(ctx, TAILSCALE_INSTALL_URL, "tailscale")


def tailscaled_running(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return _service_running(probe, "tailscaled")


def enable_tailscaled(ctx: StepContext) -> None:
    ctx.run(["systemctl", "enable", "--now", "tailscaled"])


STEPS = [
    Step(
        id="install_docker",
        description="Installing Docker",
        is_satisfied=docker_installed,
        apply=install_docker,
    ),
    Step(
        id="docker_group",
        description="Adding user to the docker group",
        is_satisfied=in_docker_group,
        apply=add_to_docker_group,
        requires=("create_user", "install_docker"),
        tolerate_failure=True,
    ),
]

FAIL2BAN_STEPS = [
    Step(
        id="enable_fail2ban",
        description="Enabling fail2ban",
        is_satisfied=fail2ban_running,
        apply=enable_fail2ban,
        requires=("install_fail2ban",),
        enabled_by="INSTALL_FAIL2BAN",
    ),
]

TAILSCALE_STEPS = [
    Step(
        id="install_tailscale",
        description="Installing Tailscale",
        is_satisfied=tailscale_installed,
        apply=install_tailscale,
        enabled_by="INSTALL_TAILSCALE",
    ),
    Step(
        id="enable_tailscaled",
        description="Enabling tailscaled",
        is_satisfied=tailscaled_running,
        apply=enable_tailscaled,
        requires=("install_tailscale",),
        enabled_by="INSTALL_TAILSCALE",
        tolerate_failure=True,
    ),
]
