"""Package index, upgrades, timezone and base packages."""

import logging

from ..command import apt_env, package_manager
from ..config import ConfigSnapshot
from ..errors import StepError
from ..probe import BOOTSTRAP_UPDATE_STAMP, StateProbe
from ..registry import Step, StepContext

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Package index
# ----------------------------------------------------------------
def index_is_fresh(config: ConfigSnapshot, probe: StateProbe) -> bool:
    age = probe.package_index_age()
    return age is not None and age < config.PACKAGE_INDEX_MAX_AGE


def refresh_index(ctx: StepContext) -> None:
    ctx.run([package_manager(), "update"], env=apt_env())
    BOOTSTRAP_UPDATE_STAMP.parent.mkdir(parents=True, exist_ok=True)
    BOOTSTRAP_UPDATE_STAMP.touch()


# ----------------------------------------------------------------
# Upgrades
# ----------------------------------------------------------------
def nothing_to_upgrade(config: ConfigSnapshot, probe: StateProbe) -> bool:
    pending = probe.pending_upgrades()
    if pending:
        logger.info(f"{len(pending)} packages can be upgraded")
    return not pending


def upgrade(ctx: StepContext) -> None:
    ctx.run(
        [
            "apt-get",
            "-y",
            "-o",
            "Dpkg::Options::=--force-confdef",
            "-o",
            "Dpkg::Options::=--force-confold",
            "upgrade",
        ],
        env=apt_env(),
    )


# ----------------------------------------------------------------
# Timezone
# ----------------------------------------------------------------
def timezone_matches(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.timezone() == config.TIMEZONE


def set_timezone(ctx: StepContext) -> None:
    ctx.run(["timedatectl", "set-timezone", ctx.config.TIMEZONE])


# ----------------------------------------------------------------
# Packages
# ----------------------------------------------------------------
def install_packages(ctx: StepContext, packages) -> None:
    """Install whichever of ``packages`` are still missing."""
    missing = ctx.probe.missing_packages(packages)
    if not missing:
        return
    logger.info(f"Installing: {' '.join(missing)}")
    ctx.run([package_manager(), "install", "-y", *missing], env=apt_env())
    still_missing = ctx.probe.missing_packages(missing)
    if still_missing:
        raise StepError(f"Packages not installed after apt: {', '.join(still_missing)}")


def base_packages_installed(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return not probe.missing_packages(config.base_packages)


def install_base_packages(ctx: StepContext) -> None:
    install_packages(ctx, ctx.config.base_packages)


def fail2ban_installed(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return not probe.missing_packages(["fail2ban"])


def install_fail2ban(ctx: StepContext) -> None:
    install_packages(ctx, ["fail2ban"])


STEPS = [
    Step(
        id="refresh_package_index",
        description="Refreshing package index",
        is_satisfied=index_is_fresh,
        apply=refresh_index,
    ),
    Step(
        id="upgrade_packages",
        description="Upgrading system packages",
        is_satisfied=nothing_to_upgrade,
        apply=upgrade,
        requires=("refresh_package_index",),
    ),
    Step(
        id="set_timezone",
        description="Setting timezone",
        is_satisfied=timezone_matches,
        apply=set_timezone,
    ),
    Step(
        id="install_base_packages",
        description="Installing base packages",
        is_satisfied=base_packages_installed,
        apply=install_base_packages,
        requires=("refresh_package_index",),
    ),
    Step(
        id="install_fail2ban",
        description="Installing fail2ban",
        is_satisfied=fail2ban_installed,
        apply=install_fail2ban,
        requires=("refresh_package_index",),
        enabled_by="INSTALL_FAIL2BAN",
    ),
]
