"""
Helpers for the files the step library rewrites.

Shell-profile snippets are keyed by a unique marker line and only appended
when the marker is absent. Rewritten system config files are backed up first
to ``<path>.bak.<timestamp>``; an existing backup is never overwritten.
"""

import datetime
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from .command import Runner, run_command

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def backup_file(path: PathLike) -> Path:
    """
    Copy a file next to itself with a timestamp suffix.

    Returns:
        Path of the new backup

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Cannot backup non-existent file: {path}")

    ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    backup = Path(f"{path}.bak.{ts}")
    counter = 1
    while backup.exists():
        backup = Path(f"{path}.bak.{ts}.{counter}")
        counter += 1

    shutil.copy2(path, backup)
    logger.info(f"Backed up {path} to {backup}")
    return backup


def has_marker(path: PathLike, marker: str) -> bool:
    """Return True when ``marker`` appears in the file; a missing file has no marker."""
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return False
    return marker in text


def upsert_block(
    path: PathLike,
    marker: str,
    body: str,
    owner: Optional[str] = None,
    runner: Runner = run_command,
) -> bool:
    """
    Append ``marker`` followed by ``body`` unless the marker is already present.

    Args:
        path: Profile file to update (created if missing)
        marker: Unique comment line identifying the block
        body: Block contents placed after the marker
        owner: ``user`` whose ``user:user`` ownership the file should get
        runner: Command runner used for chown

    Returns:
        True if the block was appended, False if it was already present
    """
    path = Path(path)
    if has_marker(path, marker):
        logger.info(f"Block {marker!r} already present in {path}")
        return False

    existing = path.read_bytes() if path.exists() else b""
    prefix = "" if not existing or existing.endswith(b"\n") else "\n"
    body = body.strip("\n")
    block = f"{prefix}\n{marker}\n{body}\n"

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(block)

    if owner:
        runner(["chown", f"{owner}:{owner}", str(path)])

    logger.info(f"Added block {marker!r} to {path}")
    return True


def _directive_key(line: str) -> Optional[str]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    return stripped.split(None, 1)[0].lower()


def read_directives(path: PathLike, keys: Sequence[str]) -> Dict[str, List[str]]:
    """Collect the values of every uncommented ``Key value`` line for ``keys``."""
    wanted = {key.lower(): key for key in keys}
    found: Dict[str, List[str]] = {key: [] for key in keys}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        key = _directive_key(line)
        if key in wanted:
            parts = line.strip().split(None, 1)
            found[wanted[key]].append(parts[1].strip() if len(parts) > 1 else "")
    return found


def set_directives(path: PathLike, settings: Mapping[str, str]) -> bool:
    """
    Rewrite every uncommented occurrence of each key and add missing keys.

    Missing keys are inserted before the first ``Match`` block so they stay
    global.

    Returns:
        True if the file content changed
    """
    path = Path(path)
    original = path.read_text(encoding="utf-8")
    lines = original.splitlines()
    wanted = {key.lower(): key for key in settings}
    seen = set()

    new_lines = []
    for line in lines:
        key = _directive_key(line)
        if key in wanted:
            name = wanted[key]
            indent = line[: len(line) - len(line.lstrip())]
            new_lines.append(f"{indent}{name} {settings[name]}")
            seen.add(name)
        else:
            new_lines.append(line)

    missing = [f"{key} {value}" for key, value in settings.items() if key not in seen]
    if missing:
        insert_at = next(
            (i for i, line in enumerate(new_lines) if _directive_key(line) == "match"),
            len(new_lines),
        )
        new_lines[insert_at:insert_at] = missing

    updated = "\n".join(new_lines) + "\n"
    if updated == original:
        return False
    path.write_text(updated, encoding="utf-8")
    return True
