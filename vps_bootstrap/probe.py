"""
Read-only inspection of the live system.

Absence is a normal answer: a missing user, package, file or rule is reported
as False (or an empty result). Only a failure of the inspection itself, such
as a probe command that cannot run, times out or prints something unexpected,
raises ProbeError.
"""

import json
import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import FrozenSet, List, Mapping, NamedTuple, Optional, Sequence, Set, Union

from .command import Command, Runner, run_command
from .errors import ExecutionError, ProbeError
from .files import has_marker, read_directives

logger = logging.getLogger(__name__)

APT_LISTS_DIR: Path = Path("/var/lib/apt/lists")
APT_UPDATE_STAMP: Path = Path("/var/lib/apt/periodic/update-success-stamp")
BOOTSTRAP_UPDATE_STAMP: Path = Path("/var/lib/vps_bootstrap/apt-update-stamp")

PASSWORD_SET = {"P", "PS"}
PASSWORD_MISSING = {"L", "LK", "NP"}


class FirewallState(NamedTuple):
    active: bool
    rules: FrozenSet[str]


def parse_ufw_status(output: str) -> FirewallState:
    """
    Parse ``ufw status`` output into the active flag and the allowed rules.

    IPv6 duplicates (``22/tcp (v6)``) collapse into their IPv4 rule.
    """
    active = False
    rules: Set[str] = set()
    for line in output.splitlines():
        stripped = line.strip()
        if stripped.lower().startswith("status:"):
            active = stripped.split(":", 1)[1].strip().lower() == "active"
            continue
        parts = stripped.replace("(v6)", " ").split()
        if len(parts) >= 2 and parts[1].upper() == "ALLOW":
            rules.add(parts[0])
    return FirewallState(active, frozenset(rules))


def parse_pnpm_list(output: str) -> Set[str]:
    """Collect the dependency names from ``pnpm list -g --json`` output."""
    if not output.strip():
        return set()
    data = json.loads(output)
    if isinstance(data, dict):
        data = [data]
    names: Set[str] = set()
    for entry in data:
        names.update((entry.get("dependencies") or {}).keys())
    return names


class StateProbe:
    """Side-effect-free questions about the system state."""

    def __init__(self, runner: Runner = run_command, timeout: int = 120):
        self.runner = runner
        self.timeout = timeout

    def _run(
        self, cmd: Command, user: Optional[str] = None
    ) -> subprocess.CompletedProcess:
        try:
            return self.runner(
                cmd, check=False, capture_output=True, timeout=self.timeout, user=user
            )
        except ExecutionError as e:
            raise ProbeError(str(e))

    # ----------------------------------------------------------------
    # Commands, users and groups
    # ----------------------------------------------------------------
    def command_exists(self, name: str) -> bool:
        return shutil.which(name) is not None

    def user_exists(self, user: str) -> bool:
        return self._run(["id", "-u", user]).returncode == 0

    def user_groups(self, user: str) -> Set[str]:
        result = self._run(["id", "-nG", user])
        if result.returncode != 0:
            return set()
        return set(result.stdout.split())

    def user_in_group(self, user: str, group: str) -> bool:
        return group in self.user_groups(user)

    def password_status(self, user: str) -> str:
        """Return the status column of ``passwd -S`` (P, L, NP...)."""
        result = self._run(["passwd", "-S", user])
        fields = result.stdout.split()
        if result.returncode != 0 or len(fields) < 2:
            raise ProbeError(
                f"Cannot read password status for {user}: "
                f"{(result.stderr or result.stdout).strip() or 'no output'}"
            )
        return fields[1]

    def needs_password(self, user: str) -> bool:
        """
        Decide whether the account still needs a password.

        Raises:
            ProbeError: If the status is neither set nor locked/empty
        """
        status = self.password_status(user)
        if status in PASSWORD_SET:
            return False
        if status in PASSWORD_MISSING:
            return True
        raise ProbeError(f"Unexpected password status {status!r} for {user}")

    # ----------------------------------------------------------------
    # Packages
    # ----------------------------------------------------------------
    def missing_packages(self, packages: Sequence[str]) -> List[str]:
        """Return the subset of ``packages`` dpkg does not report as installed."""
        if not packages:
            return []
        result = self._run(
            ["dpkg-query", "-W", "-f=${Package}\t${Status}\n", *packages]
        )
        installed = set()
        for line in result.stdout.splitlines():
            name, _, status = line.partition("\t")
            if status.strip() == "install ok installed":
                installed.add(name.split(":", 1)[0])
        return [pkg for pkg in packages if pkg not in installed]

    def package_index_age(self) -> Optional[float]:
        """
        Hours since the apt index was last refreshed, None if never.

        Stamp files win over the list files, whose mtimes follow the mirror's
        Last-Modified time rather than the time of the update.
        """
        try:
            stamps = [
                p for p in (BOOTSTRAP_UPDATE_STAMP, APT_UPDATE_STAMP) if p.is_file()
            ]
            if stamps:
                newest = max(p.stat().st_mtime for p in stamps)
            else:
                mtimes = [
                    p.stat().st_mtime
                    for p in APT_LISTS_DIR.glob("*")
                    if p.is_file() and p.name != "lock"
                ]
                if not mtimes:
                    return None
                newest = max(mtimes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ProbeError(f"Cannot inspect apt lists: {e}")
        return max(0.0, (time.time() - newest) / 3600)

    def pending_upgrades(self) -> List[str]:
        result = self._run(["apt-get", "-s", "-o", "Debug::NoLocking=1", "upgrade"])
        if result.returncode != 0:
            raise ProbeError(f"Upgrade simulation failed: {result.stderr.strip()}")
        return [
            line.split()[1]
            for line in result.stdout.splitlines()
            if line.startswith("Inst ")
        ]

    # ----------------------------------------------------------------
    # Services and system settings
    # ----------------------------------------------------------------
    def timezone(self) -> str:
        result = self._run(["timedatectl", "show", "-p", "Timezone", "--value"])
        if result.returncode != 0:
            raise ProbeError(f"Cannot read timezone: {result.stderr.strip()}")
        return result.stdout.strip()

    def service_active(self, name: str) -> bool:
        return self._run(["systemctl", "is-active", "--quiet", name]).returncode == 0

    def service_enabled(self, name: str) -> bool:
        return self._run(["systemctl", "is-enabled", "--quiet", name]).returncode == 0

    def firewall_state(self) -> FirewallState:
        if not self.command_exists("ufw"):
            return FirewallState(False, frozenset())
        result = self._run(["ufw", "status"])
        if result.returncode != 0:
            raise ProbeError(f"ufw status failed: {result.stderr.strip()}")
        return parse_ufw_status(result.stdout)

    # ----------------------------------------------------------------
    # Files
    # ----------------------------------------------------------------
    def path_exists(self, path: Union[str, Path]) -> bool:
        try:
            return Path(path).exists()
        except OSError as e:
            raise ProbeError(f"Cannot inspect {path}: {e}")

    def file_contains(self, path: Union[str, Path], marker: str) -> bool:
        try:
            return has_marker(path, marker)
        except OSError as e:
            raise ProbeError(f"Cannot read {path}: {e}")

    def sshd_directives_match(
        self, path: Union[str, Path], desired: Mapping[str, str]
    ) -> bool:
        """True when every key is present and all its occurrences hold the desired value."""
        try:
            found = read_directives(path, list(desired))
        except FileNotFoundError:
            return False
        except (OSError, UnicodeDecodeError) as e:
            raise ProbeError(f"Cannot read {path}: {e}")
        for key, value in desired.items():
            values = found[key]
            if not values or any(v.lower() != value.lower() for v in values):
                return False
        return True

    # ----------------------------------------------------------------
    # Target user environment
    # ----------------------------------------------------------------
    def user_shell_succeeds(self, user: str, script: str) -> bool:
        """Run a read-only check script in the user's login shell."""
        return self._run(script, user=user).returncode == 0

    def pnpm_global_packages(self, user: str, prelude: str = "") -> Set[str]:
        script = "pnpm list -g --depth=0 --json"
        if prelude:
            script = f"{prelude}\n{script}"
        result = self._run(script, user=user)
        if result.returncode != 0:
            return set()
        try:
            return parse_pnpm_list(result.stdout)
        except (ValueError, AttributeError) as e:
            raise ProbeError(f"Unexpected pnpm list output for {user}: {e}")
