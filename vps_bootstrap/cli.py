"""
Command-line entry point: ``vps-bootstrap`` / ``python -m vps_bootstrap``.

Exit status: 0 on success, 1 when not root or a step failed fatally, 2 on a
configuration error, 130 when a signal stopped the run between steps.
"""

import os
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional

import click
from rich import box
from rich.table import Table
from rich.text import Text

from . import APP_NAME, APP_SUBTITLE, __version__
from .config import ConfigSnapshot, resolve_config
from .errors import ConfigError, RegistryError
from .executor import Executor, PlanEntry
from .log import DEFAULT_LOG_FILE, setup_logger
from .steps import build_registry
from .ui import (
    NordColors,
    console,
    create_header,
    display_panel,
    print_error,
    print_message,
    print_run_report,
    print_section,
    print_success,
    print_warning,
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_STOPPED = 130

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

PLAN_STYLES = {
    "satisfied": "success",
    "pending": "info",
    "disabled": "debug",
    "error": "error",
}


# ----------------------------------------------------------------
# Output helpers
# ----------------------------------------------------------------
def next_steps(config: ConfigSnapshot) -> List[str]:
    """Follow-up hints for the operator once a run has succeeded."""
    hints = []
    if config.ALLOW_SSH_PUBLIC:
        hints.append(f"SSH into your user:\n   ssh {config.USERNAME}@<VPS_IP>")
    if config.INSTALL_TAILSCALE:
        hints.append("(Optional) Tailscale auth (on VPS):\n   sudo tailscale up --ssh")
    if config.INSTALL_TMUX:
        hints.append(
            f"Start working in {config.PROJECT_DIR}; new SSH sessions attach "
            f"to tmux session '{config.TMUX_SESSION}'"
        )
    if config.INSTALL_AI_CLI and config.ai_cli_packages:
        hints.append(
            "Global CLI packages installed with pnpm:\n   "
            + " ".join(config.ai_cli_packages)
        )
    if config.HARDEN_SSH:
        hints.append("Password SSH login is disabled; keep your SSH key safe")
    return [f"{i}) {hint}" for i, hint in enumerate(hints, 1)]


def print_plan(entries: List[PlanEntry]) -> None:
    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=box.ROUNDED,
        title=f"[bold {NordColors.FROST_2}]Check Mode[/]",
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Detail", style=NordColors.SNOW_STORM_1, ratio=3)
    for entry in entries:
        style = PLAN_STYLES.get(entry.status, "info")
        label = f"[{style}]{entry.status.upper()}[/{style}]"
        table.add_row(entry.step_id, label, Text(entry.detail))
    console.print(table)


# ----------------------------------------------------------------
# Main CLI Entry Point with Click
# ----------------------------------------------------------------
@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Override file with NAME=value lines (default: ./env.conf when present)",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=DEFAULT_LOG_FILE,
    show_default=True,
    help="Detailed log file",
)
@click.option("--check", is_flag=True, help="Only report which steps would apply")
@click.option("--no-banner", is_flag=True, help="Do not print the ASCII banner")
@click.version_option(__version__, prog_name="vps-bootstrap")
def main(
    config_path: Optional[Path], log_file: Path, check: bool, no_banner: bool
) -> None:
    """
    Provision a fresh Ubuntu/Debian VPS.

    Every step checks the live system first and is applied only when its
    effect is missing, so the command can be rerun safely.
    """
    if not no_banner:
        console.print(create_header())
        console.print(f"[{NordColors.SNOW_STORM_1}]{APP_SUBTITLE}[/]")
    console.print(
        f"Started at: [bold {NordColors.SNOW_STORM_1}]"
        f"{time.strftime('%Y-%m-%d %H:%M:%S')}[/]"
    )

    if os.geteuid() != 0:
        print_error(f"{APP_NAME} requires root privileges. Run: sudo -i, then vps-bootstrap")
        sys.exit(EXIT_FAILED)

    try:
        config = resolve_config(config_path)
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG)

    logger = setup_logger(log_file)
    logger.info(f"Starting VPS bootstrap (target user: {config.USERNAME})")
    for name, value in config.to_dict().items():
        logger.debug(f"{name}={value!r}")

    try:
        registry = build_registry(config)
    except RegistryError as e:
        print_error(f"Invalid step registry: {e}")
        sys.exit(EXIT_FAILED)

    executor = Executor(registry, config)

    if check:
        print_section("Check Mode")
        entries = executor.plan()
        print_plan(entries)
        errors = [e.step_id for e in entries if e.status == "error"]
        if errors:
            print_error(f"Probes failed for: {', '.join(errors)}")
            sys.exit(EXIT_FAILED)
        sys.exit(EXIT_OK)

    def signal_handler(sig, frame) -> None:
        sig_name = signal.Signals(sig).name
        print_warning(f"Received {sig_name}; stopping after the current step")
        logger.warning(f"{sig_name} received, stop requested")
        executor.request_stop()

    previous = {sig: signal.getsignal(sig) for sig in HANDLED_SIGNALS}
    for sig in HANDLED_SIGNALS:
        signal.signal(sig, signal_handler)
    try:
        print_section(f"Running {len(registry)} steps")
        report = executor.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print_run_report(report)
    logger.debug(f"Outcome counts: {report.counts()}")

    if report.failed_step is not None:
        print_error(f"Bootstrap failed at step: {report.failed_step}")
        print_message(f"Details are in {log_file}; fix the cause and rerun.")
        sys.exit(EXIT_FAILED)

    if report.stopped:
        print_warning("Bootstrap stopped before all steps ran; rerun to continue.")
        sys.exit(EXIT_STOPPED)

    print_success("Bootstrap completed")
    hints = next_steps(config)
    if hints:
        display_panel("\n".join(hints), NordColors.FROST_2, "Next steps")
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
