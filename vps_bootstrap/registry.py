"""Step definitions and the fixed, ordering-stable step registry."""

import enum
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Sequence, Tuple

from .command import Command, Runner, run_command
from .config import ConfigSnapshot
from .errors import RegistryError
from .probe import StateProbe


class Identity(enum.Enum):
    """Account a step's commands execute as."""

    ROOT = "root"
    TARGET_USER = "target-user"


@dataclass
class StepContext:
    """What an apply action gets: the snapshot, the probe and a bound runner."""

    config: ConfigSnapshot
    probe: StateProbe
    identity: Identity = Identity.ROOT
    runner: Runner = run_command

    def run(
        self,
        cmd: Command,
        check: bool = True,
        capture_output: bool = True,
        env: Optional[Dict[str, str]] = None,
        as_root: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a command under the step's identity (or as root when asked)."""
        user = None
        if self.identity is Identity.TARGET_USER and not as_root:
            user = self.config.USERNAME
        return self.runner(
            cmd,
            env=env,
            check=check,
            capture_output=capture_output,
            timeout=self.config.COMMAND_TIMEOUT,
            user=user,
        )


SatisfiedCheck = Callable[[ConfigSnapshot, StateProbe], bool]
ApplyAction = Callable[[StepContext], None]


@dataclass(frozen=True)
class Step:
    """
    One named provisioning action.

    ``enabled_by`` names a boolean option; when it is false the step is
    skipped without probing. ``tolerate_failure`` marks the few non-essential
    steps whose failure is reported but does not halt the run.
    """

    id: str
    description: str
    is_satisfied: SatisfiedCheck
    apply: ApplyAction
    requires: Tuple[str, ...] = ()
    identity: Identity = Identity.ROOT
    enabled_by: Optional[str] = None
    tolerate_failure: bool = False
    interactive: bool = False

    def is_enabled(self, config: ConfigSnapshot) -> bool:
        if self.enabled_by is None:
            return True
        return bool(config.get(self.enabled_by))


class StepRegistry:
    """Immutable sequence of steps in a manually curated topological order."""

    def __init__(self, steps: Sequence[Step]):
        self._steps: Tuple[Step, ...] = tuple(steps)
        self._validate()

    @property
    def steps(self) -> Tuple[Step, ...]:
        return self._steps

    def _validate(self) -> None:
        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise RegistryError(f"Duplicate step id: {step.id}")
            for prerequisite in step.requires:
                if prerequisite == step.id:
                    raise RegistryError(f"Step {step.id} requires itself")
                if prerequisite not in seen:
                    if any(s.id == prerequisite for s in self.steps):
                        raise RegistryError(
                            f"Step {step.id} is registered before its prerequisite "
                            f"{prerequisite}"
                        )
                    raise RegistryError(
                        f"Step {step.id} requires unknown step {prerequisite}"
                    )
            seen.add(step.id)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __contains__(self, step_id: object) -> bool:
        return any(step.id == step_id for step in self.steps)

    def ids(self) -> Tuple[str, ...]:
        return tuple(step.id for step in self.steps)

    def get(self, step_id: str) -> Step:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def index(self, step_id: str) -> int:
        return self.ids().index(step_id)
