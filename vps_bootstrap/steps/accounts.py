"""Target user account, sudo membership and password."""

import logging
import sys

from ..config import ConfigSnapshot
from ..errors import StepError
from ..probe import StateProbe
from ..registry import Step, StepContext

logger = logging.getLogger(__name__)


def user_exists(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.user_exists(config.USERNAME)


def create_user(ctx: StepContext) -> None:
    ctx.run(["adduser", "--disabled-password", "--gecos", "", ctx.config.USERNAME])
    logger.info(f"User {ctx.config.USERNAME} created")


def in_sudo_group(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.user_in_group(config.USERNAME, "sudo")


def grant_sudo(ctx: StepContext) -> None:
    ctx.run(["usermod", "-aG", "sudo", ctx.config.USERNAME])


def password_set(config: ConfigSnapshot, probe: StateProbe) -> bool:
    # adduser --disabled-password leaves a new account locked (L)
    return not probe.needs_password(config.USERNAME)


def set_password(ctx: StepContext) -> None:
    """Prompt for a password on the terminal; passwd does the prompting."""
    if not sys.stdin.isatty():
        raise StepError(
            f"A password for {ctx.config.USERNAME} is required for sudo but there "
            "is no terminal to prompt on; run interactively or set it with passwd"
        )
    logger.info(f"Setting a password for {ctx.config.USERNAME} (required for sudo)")
    ctx.run(["passwd", ctx.config.USERNAME], capture_output=False)


STEPS = [
    Step(
        id="create_user",
        description="Creating target user",
        is_satisfied=user_exists,
        apply=create_user,
    ),
    Step(
        id="grant_sudo",
        description="Granting sudo group membership",
        is_satisfied=in_sudo_group,
        apply=grant_sudo,
        requires=("create_user",),
    ),
    Step(
        id="set_password",
        description="Setting user password",
        is_satisfied=password_set,
        apply=set_password,
        requires=("create_user",),
        interactive=True,
    ),
]
