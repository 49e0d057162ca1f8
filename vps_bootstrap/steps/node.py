"""
NVM, Node.js LTS, pnpm and the global AI-CLI packages for the target user.

Every command here runs in the target user's login shell; the NVM and pnpm
preludes make the user's toolchain visible to a non-interactive shell.
"""

import logging
import shlex
from typing import List

from ..config import ConfigSnapshot
from ..files import upsert_block
from ..probe import StateProbe
from ..registry import Identity, Step, StepContext

logger = logging.getLogger(__name__)

NVM_INSTALL_URL: str = "https://raw.githubusercontent.com/nvm-sh/nvm/{version}/install.sh"

NVM_PRELUDE: str = """\
export NVM_DIR="$HOME/.nvm"
[ -s "$NVM_DIR/nvm.sh" ] && . "$NVM_DIR/nvm.sh"
export COREPACK_ENABLE_DOWNLOAD_PROMPT=0"""

PNPM_PRELUDE: str = f"""\
{NVM_PRELUDE}
export PNPM_HOME="$HOME/.local/share/pnpm"
export PATH="$PNPM_HOME:$PATH\""""

PNPM_MARKER: str = "# --- pnpm ---"
PNPM_PROFILE: str = """\
export PNPM_HOME="$HOME/.local/share/pnpm"
case ":$PATH:" in
  *":$PNPM_HOME:"*) ;;
  *) export PATH="$PNPM_HOME:$PATH" ;;
esac"""


def _script(*lines: str) -> str:
    return "\n".join(("set -eo pipefail",) + lines)


# ----------------------------------------------------------------
# NVM + Node
# ----------------------------------------------------------------
def nvm_installed(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.path_exists(config.user_home / ".nvm" / "nvm.sh")


def install_nvm(ctx: StepContext) -> None:
    url = NVM_INSTALL_URL.format(version=ctx.config.NVM_VERSION)
    ctx.run(_script(f"curl -fsSL {shlex.quote(url)} | bash"))


def node_lts_default(config: ConfigSnapshot, probe: StateProbe) -> bool:
    check = "\n".join(
        [
            NVM_PRELUDE,
            "command -v nvm >/dev/null || exit 1",
            'current="$(nvm version default)"',
            '[ "$current" != "N/A" ] && [ "$current" = "$(nvm version \'lts/*\')" ]',
        ]
    )
    return probe.user_shell_succeeds(config.USERNAME, check)


def install_node(ctx: StepContext) -> None:
    result = ctx.run(
        _script(
            NVM_PRELUDE,
            "nvm install --lts",
            "nvm alias default 'lts/*'",
            "node -v",
        )
    )
    lines = (result.stdout or "").strip().splitlines()
    if lines:
        logger.info(f"Node {lines[-1]} is the default")


# ----------------------------------------------------------------
# pnpm
# ----------------------------------------------------------------
def pnpm_ready(config: ConfigSnapshot, probe: StateProbe) -> bool:
    check = "\n".join(
        [
            PNPM_PRELUDE,
            "command -v pnpm >/dev/null || exit 1",
            '[ "$(pnpm config get global-bin-dir)" = "$PNPM_HOME" ]',
        ]
    )
    return probe.user_shell_succeeds(config.USERNAME, check)


def enable_pnpm(ctx: StepContext) -> None:
    ctx.run(
        _script(
            PNPM_PRELUDE,
            "corepack enable",
            "corepack prepare pnpm@latest --activate",
            'mkdir -p "$PNPM_HOME"',
            'pnpm config set global-bin-dir "$PNPM_HOME"',
            "pnpm -v",
        )
    )


def pnpm_profile_present(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.file_contains(config.bashrc_path, PNPM_MARKER)


def write_pnpm_profile(ctx: StepContext) -> None:
    upsert_block(
        ctx.config.bashrc_path,
        PNPM_MARKER,
        PNPM_PROFILE,
        owner=ctx.config.USERNAME,
        runner=ctx.runner,
    )


# ----------------------------------------------------------------
# AI CLI packages
# ----------------------------------------------------------------
def package_name(spec: str) -> str:
    """Strip a version from a pnpm spec: ``pkg@1.2`` and ``@scope/pkg@1`` keep only the name."""
    at = spec.rfind("@")
    return spec[:at] if at > 0 else spec


def ai_cli_step(spec: str) -> Step:
    name = package_name(spec)

    def installed(config: ConfigSnapshot, probe: StateProbe) -> bool:
        return name in probe.pnpm_global_packages(config.USERNAME, PNPM_PRELUDE)

    def install(ctx: StepContext) -> None:
        ctx.run(_script(PNPM_PRELUDE, f"pnpm add -g {shlex.quote(spec)}"))

    return Step(
        id=f"ai_cli:{name}",
        description=f"Installing {name}",
        is_satisfied=installed,
        apply=install,
        requires=("enable_pnpm",),
        identity=Identity.TARGET_USER,
        enabled_by="INSTALL_AI_CLI",
    )


def ai_cli_steps(config: ConfigSnapshot) -> List[Step]:
    """One step per package name; a repeated name keeps its first spec."""
    steps: List[Step] = []
    seen = set()
    for spec in config.ai_cli_packages:
        name = package_name(spec)
        if name not in seen:
            seen.add(name)
            steps.append(ai_cli_step(spec))
    return steps


STEPS = [
    Step(
        id="install_nvm",
        description="Installing NVM",
        is_satisfied=nvm_installed,
        apply=install_nvm,
        requires=("create_user",),
        identity=Identity.TARGET_USER,
    ),
    Step(
        id="install_node",
        description="Installing Node.js LTS",
        is_satisfied=node_lts_default,
        apply=install_node,
        requires=("install_nvm",),
        identity=Identity.TARGET_USER,
    ),
    Step(
        id="enable_pnpm",
        description="Enabling pnpm via corepack",
        is_satisfied=pnpm_ready,
        apply=enable_pnpm,
        requires=("install_node",),
        identity=Identity.TARGET_USER,
    ),
    Step(
        id="pnpm_profile",
        description="Persisting PNPM_HOME in .bashrc",
        is_satisfied=pnpm_profile_present,
        apply=write_pnpm_profile,
        requires=("enable_pnpm",),
        identity=Identity.TARGET_USER,
    ),
]
