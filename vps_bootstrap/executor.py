"""
Fail-fast executor for the step registry.

Each step moves Pending -> Skipped, or Pending -> Applying -> Applied/Failed.
The first fatal failure halts the run: no later step is evaluated, nothing is
retried and nothing already applied is rolled back. Rerunning converges
because every applied step is skipped by its satisfied-check next time.
"""

import contextlib
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .command import Runner, run_command
from .config import ConfigSnapshot
from .errors import ProbeError, StepError
from .probe import StateProbe
from .registry import Step, StepContext, StepRegistry
from .ui import (
    NordColors,
    console,
    print_error,
    print_skip,
    print_step,
    print_success,
    print_warning,
)

logger = logging.getLogger(__name__)

DISABLED_BY_CONFIG = "disabled by config"
ALREADY_SATISFIED = "already satisfied"


class Outcome(enum.Enum):
    SKIPPED = "skipped"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    step_id: str
    outcome: Outcome
    detail: str = ""
    elapsed: float = 0.0
    fatal: bool = False


@dataclass
class RunReport:
    """Append-only record of step outcomes in execution order."""

    entries: List[StepResult] = field(default_factory=list)
    stopped: bool = False

    def append(self, result: StepResult) -> None:
        self.entries.append(result)

    def __iter__(self) -> Iterator[StepResult]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def ids(self) -> List[str]:
        return [entry.step_id for entry in self.entries]

    def outcome_of(self, step_id: str) -> Optional[Outcome]:
        for entry in self.entries:
            if entry.step_id == step_id:
                return entry.outcome
        return None

    @property
    def failed_step(self) -> Optional[str]:
        """Id of the step whose fatal failure halted the run, if any."""
        for entry in self.entries:
            if entry.outcome is Outcome.FAILED and entry.fatal:
                return entry.step_id
        return None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None and not self.stopped

    def counts(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in Outcome}
        for entry in self.entries:
            counts[entry.outcome.value] += 1
        return counts


@dataclass(frozen=True)
class PlanEntry:
    step_id: str
    status: str  # disabled | satisfied | pending | error
    detail: str = ""


class Executor:
    """Runs the registry's steps strictly in order against one snapshot."""

    def __init__(
        self,
        registry: StepRegistry,
        config: ConfigSnapshot,
        probe: Optional[StateProbe] = None,
        runner: Runner = run_command,
        show_progress: bool = True,
    ):
        self.registry = registry
        self.config = config
        self.runner = runner
        self.probe = probe if probe is not None else StateProbe(runner)
        self.show_progress = show_progress
        self._stop_requested = False

    def request_stop(self) -> None:
        """Stop dispatching steps; the step currently running is not interrupted."""
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run(self) -> RunReport:
        report = RunReport()
        for step in self.registry:
            if self._stop_requested:
                logger.warning("Stop requested; remaining steps were not dispatched.")
                report.stopped = True
                break

            result = self._run_step(step, report)
            report.append(result)
            logger.debug(
                f"{step.id}: {result.outcome.value} ({result.detail}) "
                f"in {result.elapsed:.2f}s"
            )

            if result.outcome is Outcome.FAILED and result.fatal:
                print_error(f"{step.description} failed; halting run: {result.detail}")
                break
        return report

    def _failed(self, step: Step, detail: str, start: float) -> StepResult:
        fatal = not step.tolerate_failure
        if not fatal:
            print_warning(f"{step.description} failed (tolerated): {detail}")
        return StepResult(step.id, Outcome.FAILED, detail, time.time() - start, fatal)

    def _run_step(self, step: Step, report: RunReport) -> StepResult:
        start = time.time()

        if not step.is_enabled(self.config):
            print_skip(f"{step.description}: {DISABLED_BY_CONFIG}")
            return StepResult(step.id, Outcome.SKIPPED, DISABLED_BY_CONFIG)

        for prerequisite in step.requires:
            if report.outcome_of(prerequisite) is Outcome.FAILED:
                return self._failed(
                    step, f"prerequisite {prerequisite} failed", start
                )

        try:
            satisfied = step.is_satisfied(self.config, self.probe)
        except ProbeError as e:
            return self._failed(step, f"probe failed: {e}", start)

        if satisfied:
            print_skip(f"{step.description}: {ALREADY_SATISFIED}")
            return StepResult(
                step.id, Outcome.SKIPPED, ALREADY_SATISFIED, time.time() - start
            )

        context = StepContext(self.config, self.probe, step.identity, self.runner)
        try:
            with self._progress(step):
                step.apply(context)
        except (StepError, ProbeError, OSError, ValueError) as e:
            logger.debug(f"{step.id} apply failed", exc_info=True)
            return self._failed(step, str(e), start)

        elapsed = time.time() - start
        print_success(f"{step.description} applied in {elapsed:.2f}s")
        return StepResult(step.id, Outcome.APPLIED, "applied", elapsed)

    def _progress(self, step: Step):
        if not self.show_progress or step.interactive:
            print_step(step.description)
            return contextlib.nullcontext()
        progress = Progress(
            SpinnerColumn(spinner_name="dots", style=f"bold {NordColors.FROST_1}"),
            TextColumn(f"[bold {NordColors.FROST_2}]{{task.description}}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        progress.add_task(step.description, total=None)
        return progress

    def plan(self) -> List[PlanEntry]:
        """
        Evaluate satisfied-checks without applying anything.

        Steps whose prerequisites are still pending are reported pending
        without probing, since their checks assume the prerequisite's effect.
        """
        entries: List[PlanEntry] = []
        pending = set()
        for step in self.registry:
            if not step.is_enabled(self.config):
                entries.append(PlanEntry(step.id, "disabled", DISABLED_BY_CONFIG))
                continue
            blocked = [p for p in step.requires if p in pending]
            if blocked:
                pending.add(step.id)
                entries.append(PlanEntry(step.id, "pending", f"after {blocked[0]}"))
                continue
            try:
                satisfied = step.is_satisfied(self.config, self.probe)
            except ProbeError as e:
                pending.add(step.id)
                entries.append(PlanEntry(step.id, "error", str(e)))
                continue
            if satisfied:
                entries.append(PlanEntry(step.id, "satisfied", ALREADY_SATISFIED))
            else:
                pending.add(step.id)
                entries.append(PlanEntry(step.id, "pending", "would apply"))
        return entries
