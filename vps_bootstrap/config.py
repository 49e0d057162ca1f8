"""
Configuration snapshot and resolver.

Every option has a built-in default, an optional override in an ``env.conf``
style file (``NAME=value``) and an optional environment override
(``VPS_NAME=value``). Precedence is environment > override file > default;
an empty value counts as unset, the same way ``${NAME:-default}`` behaves in
a shell script.
"""

import io
import logging
import os
import re
from collections import namedtuple
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from dotenv import dotenv_values

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX: str = "VPS_"
DEFAULT_OVERRIDE_FILE: Path = Path("env.conf")

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")

BASE_PACKAGES: List[str] = [
    "openssh-server",
    "ufw",
    "curl",
    "git",
    "htop",
    "net-tools",
    "ca-certificates",
    "gnupg",
    "lsb-release",
]

Option = namedtuple("Option", ["name", "type", "default", "help"])


def _option(default: Any, help: str) -> Any:
    return field(default=default, metadata={"help": help})


# ----------------------------------------------------------------
# Configuration Snapshot
# ----------------------------------------------------------------
@dataclass(frozen=True)
class ConfigSnapshot:
    """Fully resolved, immutable configuration for one run."""

    USERNAME: str = _option("admin", "Login user to create and provision")
    TIMEZONE: str = _option("UTC", "System timezone passed to timedatectl")

    ALLOW_HTTP: bool = _option(True, "Allow 80/tcp through the firewall")
    ALLOW_HTTPS: bool = _option(True, "Allow 443/tcp through the firewall")
    ALLOW_SSH_PUBLIC: bool = _option(
        False, "Allow SSH_PORT/tcp publicly (otherwise rely on console/Tailscale)"
    )
    SSH_PORT: int = _option(22, "SSH port used by the firewall and sshd")

    INSTALL_TAILSCALE: bool = _option(True, "Install Tailscale and enable tailscaled")
    INSTALL_FAIL2BAN: bool = _option(True, "Install and enable fail2ban")
    INSTALL_TMUX: bool = _option(
        False, "Install tmux, create PROJECT_DIR and add the auto-session snippet"
    )
    INSTALL_AI_CLI: bool = _option(True, "Install AI_CLI_PACKAGES globally with pnpm")
    AI_CLI_PACKAGES: str = _option(
        "opencode-cli", "Comma or space separated global pnpm packages"
    )
    NVM_VERSION: str = _option("v0.39.7", "nvm installer release tag")

    TMUX_SESSION: str = _option("main", "tmux session name")
    PROJECT_DIR: str = _option("", "tmux root directory (default /home/USERNAME/apps)")
    WEB_CMD: str = _option("cd web && pnpm dev", "Command for the web pane")
    API_CMD: str = _option("cd api && pnpm dev", "Command for the api pane")
    COMPOSE_CMD: str = _option("docker compose up -d", "Command for the compose pane")
    LOGS_CMD: str = _option(
        "docker compose logs -f --tail=200", "Command run after COMPOSE_CMD"
    )

    HARDEN_SSH: bool = _option(
        True, "Disable SSH password and root login, enforce key authentication"
    )

    PACKAGE_INDEX_MAX_AGE: int = _option(
        24, "Hours before the apt package index is refreshed again"
    )
    COMMAND_TIMEOUT: int = _option(1800, "Seconds allowed for each external command")

    def __post_init__(self) -> None:
        if not self.PROJECT_DIR:
            object.__setattr__(self, "PROJECT_DIR", f"/home/{self.USERNAME}/apps")

    @classmethod
    def options(cls) -> List[Option]:
        """Return the closed option set in declaration order."""
        return [
            Option(f.name, f.type, f.default, f.metadata.get("help", ""))
            for f in fields(cls)
        ]

    @classmethod
    def option_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def get(self, name: str) -> Any:
        if name not in self.option_names():
            raise KeyError(name)
        return getattr(self, name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the config to a dictionary."""
        return asdict(self)

    @property
    def user_home(self) -> Path:
        return Path("/home") / self.USERNAME

    @property
    def bashrc_path(self) -> Path:
        return self.user_home / ".bashrc"

    @property
    def firewall_ports(self) -> List[str]:
        """Rules the firewall should allow, as ``port/proto`` strings."""
        ports = []
        if self.ALLOW_SSH_PUBLIC:
            ports.append(f"{self.SSH_PORT}/tcp")
        if self.ALLOW_HTTP:
            ports.append("80/tcp")
        if self.ALLOW_HTTPS:
            ports.append("443/tcp")
        return ports

    @property
    def ai_cli_packages(self) -> List[str]:
        packages: List[str] = []
        for name in re.split(r"[\s,]+", self.AI_CLI_PACKAGES.strip()):
            if name and name not in packages:
                packages.append(name)
        return packages

    @property
    def base_packages(self) -> List[str]:
        packages = list(BASE_PACKAGES)
        if self.INSTALL_TMUX:
            packages.append("tmux")
        return packages


# ----------------------------------------------------------------
# Resolver
# ----------------------------------------------------------------
def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"expected one of {sorted(TRUE_VALUES | FALSE_VALUES)}")


def _coerce(option: Option, raw: str, source: str) -> Any:
    try:
        if option.type is bool:
            return parse_bool(raw)
        if option.type is int:
            return int(raw.strip())
        return raw
    except ValueError as e:
        raise ConfigError(f"Invalid value {raw!r} for {option.name} from {source}: {e}")


def load_override_file(path: Union[str, Path]) -> Dict[str, str]:
    """
    Read an ``env.conf`` style override file.

    Args:
        path: File with ``NAME=value`` lines (``export`` prefixes, quotes and
            comments are accepted)

    Returns:
        Mapping of every assigned key to its string value

    Raises:
        ConfigError: If the file is missing, not a regular file, unreadable or
            not valid UTF-8
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Override file {path} does not exist or is not a file")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read override file {path}: {e}")

    values = dotenv_values(stream=io.StringIO(text))
    return {key: value for key, value in values.items() if value is not None}


def resolve_config(
    override_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
    env_prefix: str = ENV_PREFIX,
) -> ConfigSnapshot:
    """
    Merge defaults, the override file and the environment into one snapshot.

    When ``override_path`` is None the default ``env.conf`` in the working
    directory is used if it exists; an explicitly given path must exist.
    """
    if environ is None:
        environ = os.environ

    overrides: Dict[str, str] = {}
    if override_path is not None:
        overrides = load_override_file(override_path)
        logger.info(f"Loaded overrides from {override_path}")
    elif DEFAULT_OVERRIDE_FILE.exists():
        overrides = load_override_file(DEFAULT_OVERRIDE_FILE)
        logger.info(f"Loaded overrides from {DEFAULT_OVERRIDE_FILE.resolve()}")

    known = set(ConfigSnapshot.option_names())
    for key in sorted(set(overrides) - known):
        logger.debug(f"Ignoring unknown override {key}")

    values: Dict[str, Any] = {}
    for option in ConfigSnapshot.options():
        env_key = f"{env_prefix}{option.name}"
        if environ.get(env_key, ""):
            values[option.name] = _coerce(option, environ[env_key], f"${env_key}")
            logger.debug(f"{option.name} resolved from environment")
        elif overrides.get(option.name, ""):
            values[option.name] = _coerce(
                option, overrides[option.name], "override file"
            )
            logger.debug(f"{option.name} resolved from override file")

    snapshot = ConfigSnapshot(**values)
    validate_config(snapshot)
    return snapshot


def validate_config(config: ConfigSnapshot) -> None:
    """Reject values that would make the step library misbehave."""
    if not USERNAME_PATTERN.match(config.USERNAME):
        raise ConfigError(f"USERNAME {config.USERNAME!r} is not a valid login name")
    if config.USERNAME == "root":
        raise ConfigError("USERNAME must not be root")
    if not 1 <= config.SSH_PORT <= 65535:
        raise ConfigError(f"SSH_PORT {config.SSH_PORT} is outside 1-65535")
    if not config.TIMEZONE.strip():
        raise ConfigError("TIMEZONE must not be empty")
    if config.PACKAGE_INDEX_MAX_AGE < 0:
        raise ConfigError("PACKAGE_INDEX_MAX_AGE must not be negative")
    if config.COMMAND_TIMEOUT <= 0:
        raise ConfigError("COMMAND_TIMEOUT must be positive")
    if config.INSTALL_AI_CLI and not config.ai_cli_packages:
        raise ConfigError("INSTALL_AI_CLI is enabled but AI_CLI_PACKAGES is empty")
