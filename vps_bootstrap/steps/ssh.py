"""sshd hardening: key-only authentication, no root login, configured port."""

import logging
import shutil
from pathlib import Path
from typing import Dict

from ..config import ConfigSnapshot
from ..errors import ExecutionError, StepError
from ..files import backup_file, set_directives
from ..probe import StateProbe
from ..registry import Step, StepContext
from ..ui import print_warning

logger = logging.getLogger(__name__)

SSHD_CONFIG: Path = Path("/etc/ssh/sshd_config")


def desired_settings(config: ConfigSnapshot) -> Dict[str, str]:
    return {
        "PasswordAuthentication": "no",
        "PubkeyAuthentication": "yes",
        "PermitRootLogin": "no",
        "Port": str(config.SSH_PORT),
    }


def sshd_hardened(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.sshd_directives_match(SSHD_CONFIG, desired_settings(config))


def harden_ssh(ctx: StepContext) -> None:
    """
    Rewrite the global sshd directives, validate with ``sshd -t`` and restart.

    An invalid result restores the backup before failing, so the running
    daemon never gets restarted onto a broken config.
    """
    settings = desired_settings(ctx.config)
    backup = backup_file(SSHD_CONFIG)

    if not set_directives(SSHD_CONFIG, settings):
        logger.info(f"{SSHD_CONFIG} already holds the desired directives")

    try:
        ctx.run(["sshd", "-t", "-f", str(SSHD_CONFIG)])
    except ExecutionError as e:
        shutil.copy2(backup, SSHD_CONFIG)
        logger.error(f"Restored {SSHD_CONFIG} from {backup}")
        raise StepError(f"sshd rejected the hardened config: {e}")

    if ctx.probe.service_enabled("ssh.socket"):
        # socket activation takes the listening port from a generated unit
        ctx.run(["systemctl", "daemon-reload"])
        ctx.run(["systemctl", "restart", "ssh.socket"])
    ctx.run(["systemctl", "restart", "ssh"])
    print_warning(
        "SSH hardened: "
        + ", ".join(f"{key} {value}" for key, value in settings.items())
    )


STEPS = [
    Step(
        id="harden_ssh",
        description="Hardening SSH",
        is_satisfied=sshd_hardened,
        apply=harden_ssh,
        enabled_by="HARDEN_SSH",
    ),
]
