"""Nord-themed console helpers shared by the CLI and the executor."""

import shutil
from typing import TYPE_CHECKING, List, Optional

import pyfiglet
from rich import box
from rich.align import Align
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from . import APP_NAME, APP_SUBTITLE, VERSION

if TYPE_CHECKING:
    from .executor import RunReport

BANNER_FONTS: List[str] = ["slant", "small", "mini"]


# ----------------------------------------------------------------
# Palette and console
# ----------------------------------------------------------------
class NordColors:
    """Nord palette entries used by the bootstrap output."""

    POLAR_NIGHT_1: str = "#2E3440"
    POLAR_NIGHT_3: str = "#434C5E"
    POLAR_NIGHT_4: str = "#4C566A"
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"

    @classmethod
    def frost(cls) -> List[str]:
        return [cls.FROST_1, cls.FROST_2, cls.FROST_3, cls.FROST_4]


nord_theme = Theme(
    {
        "info": NordColors.FROST_2,
        "warning": NordColors.YELLOW,
        "error": NordColors.RED,
        "debug": NordColors.POLAR_NIGHT_4,
        "success": NordColors.GREEN,
    }
)

console = Console(theme=nord_theme)

STATUS_STYLES = {
    "skipped": "debug",
    "applied": "success",
    "failed": "error",
}


# ----------------------------------------------------------------
# Banner
# ----------------------------------------------------------------
def _banner_lines(title: str) -> List[str]:
    width = shutil.get_terminal_size((80, 24)).columns
    fonts = BANNER_FONTS if width >= 60 else BANNER_FONTS[1:]
    for font in fonts:
        try:
            rendered = pyfiglet.Figlet(font=font, width=min(width - 10, 120)).renderText(
                title
            )
        except pyfiglet.FontNotFound:
            continue
        lines = [line for line in rendered.splitlines() if line.strip()]
        if lines:
            return lines
    return [f"=== {title} ==="]


def create_header(title: str = APP_NAME) -> Panel:
    """
    Build the startup banner: the figlet title shaded row by row in frost
    colors, framed with the version and subtitle.
    """
    lines = _banner_lines(title)
    shades = NordColors.frost()
    art = Text("\n").join(
        Text(line, style=f"bold {shades[row % len(shades)]}")
        for row, line in enumerate(lines)
    )
    return Panel(
        Align.center(art),
        border_style=NordColors.FROST_1,
        padding=(1, 2),
        title=Text(f"v{VERSION}", style=f"bold {NordColors.SNOW_STORM_2}"),
        title_align="right",
        subtitle=Text(APP_SUBTITLE, style=f"bold {NordColors.SNOW_STORM_1}"),
        subtitle_align="center",
        box=box.ROUNDED,
    )


# ----------------------------------------------------------------
# Messages
# ----------------------------------------------------------------
def print_message(text: str, style: str = NordColors.FROST_2, prefix: str = "•") -> None:
    """Print one line with a colored prefix; ``text`` is never parsed as markup."""
    console.print(f"[{style}]{prefix} {escape(text)}[/{style}]", highlight=False)


def print_success(message: str) -> None:
    print_message(message, NordColors.GREEN, "✓")


def print_warning(message: str) -> None:
    print_message(message, NordColors.YELLOW, "⚠")


def print_error(message: str) -> None:
    print_message(message, NordColors.RED, "✗")


def print_step(message: str) -> None:
    print_message(message, NordColors.FROST_2, "→")


def print_skip(message: str) -> None:
    print_message(message, NordColors.POLAR_NIGHT_4, "·")


def print_section(title: str) -> None:
    console.print()
    console.print(Text(title, style=f"bold {NordColors.FROST_3}"))
    console.print(Text("─" * len(title), style=NordColors.FROST_3))


def display_panel(
    message: str, style: str = NordColors.FROST_2, title: Optional[str] = None
) -> None:
    console.print(
        Panel(
            Text(message, style=style),
            border_style=style,
            padding=(1, 2),
            title=Text(title, style=f"bold {style}") if title else None,
            box=box.ROUNDED,
        )
    )


# ----------------------------------------------------------------
# Run report
# ----------------------------------------------------------------
def print_run_report(report: "RunReport") -> None:
    """Print one table row per recorded step outcome plus a summary line."""
    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=box.ROUNDED,
        title=f"[bold {NordColors.FROST_2}]Run Report[/]",
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Detail", style=NordColors.SNOW_STORM_1, ratio=3)
    table.add_column("Time", justify="right", style=NordColors.FROST_3)

    for entry in report:
        status = entry.outcome.value
        style = STATUS_STYLES.get(status, "info")
        label = status.upper()
        if status == "failed" and not entry.fatal:
            label += " (tolerated)"
            style = "warning"
        table.add_row(
            entry.step_id,
            Text(label, style=style),
            Text(entry.detail),
            f"{entry.elapsed:.1f}s",
        )

    counts = report.counts()
    summary = Text.assemble(
        ("Summary: ", f"bold {NordColors.FROST_3}"),
        (f"{counts['applied']} Applied", f"bold {NordColors.GREEN}"),
        " | ",
        (f"{counts['skipped']} Skipped", f"bold {NordColors.POLAR_NIGHT_4}"),
        " | ",
        (f"{counts['failed']} Failed", f"bold {NordColors.RED}"),
    )

    console.print(
        Panel(
            Group(table, Align.center(summary)),
            border_style=NordColors.FROST_4,
            padding=(0, 1),
            box=box.ROUNDED,
        )
    )
