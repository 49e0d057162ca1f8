"""Project directory and the tmux auto-session snippet in the target user's .bashrc."""

import logging
from pathlib import Path

from ..config import ConfigSnapshot
from ..files import upsert_block
from ..probe import StateProbe
from ..registry import Identity, Step, StepContext

logger = logging.getLogger(__name__)

TMUX_MARKER: str = "# --- Auto tmux session on SSH (with 4-pane layout) ---"

TMUX_TEMPLATE: str = """\
__tmux_bootstrap_session() {
  local SESSION="__TMUX_SESSION__"
  local ROOT_DIR="__PROJECT_DIR__"
  local WEB="__WEB_CMD__"
  local API="__API_CMD__"
  local COMPOSE="__COMPOSE_CMD__"
  local LOGS="__LOGS_CMD__"

  if ! tmux has-session -t "$SESSION" 2>/dev/null; then
    tmux new-session -d -s "$SESSION" -c "$ROOT_DIR"

    # Pane 0: web
    tmux send-keys -t "$SESSION":0.0 "cd \\"$ROOT_DIR\\" && $WEB" C-m

    # Pane 1: api (right)
    tmux split-window -h -t "$SESSION":0 -c "$ROOT_DIR"
    tmux send-keys -t "$SESSION":0.1 "cd \\"$ROOT_DIR\\" && $API" C-m

    # Pane 2: compose + logs (bottom-left)
    tmux select-pane -t "$SESSION":0.0
    tmux split-window -v -t "$SESSION":0 -c "$ROOT_DIR"
    tmux send-keys -t "$SESSION":0.2 "cd \\"$ROOT_DIR\\" && $COMPOSE && $LOGS" C-m

    # Pane 3: shell (bottom-right)
    tmux select-pane -t "$SESSION":0.1
    tmux split-window -v -t "$SESSION":0 -c "$ROOT_DIR"
    tmux send-keys -t "$SESSION":0.3 "cd \\"$ROOT_DIR\\"" C-m

    tmux select-layout -t "$SESSION":0 tiled >/dev/null 2>&1 || true
  fi
}

if [[ -z "$TMUX" && -n "$SSH_CONNECTION" && $- == *i* ]]; then
  __tmux_bootstrap_session
  tmux attach -t "__TMUX_SESSION__"
fi"""

PLACEHOLDERS = {
    "__TMUX_SESSION__": "TMUX_SESSION",
    "__PROJECT_DIR__": "PROJECT_DIR",
    "__WEB_CMD__": "WEB_CMD",
    "__API_CMD__": "API_CMD",
    "__COMPOSE_CMD__": "COMPOSE_CMD",
    "__LOGS_CMD__": "LOGS_CMD",
}


def _double_quoted(value: str) -> str:
    """Escape a value for use inside a double-quoted bash string."""
    for char in ("\\", '"', "$", "`"):
        value = value.replace(char, "\\" + char)
    return value


def render_tmux_snippet(config: ConfigSnapshot) -> str:
    """Fill every placeholder occurrence in the tmux template from ``config``."""
    snippet = TMUX_TEMPLATE
    for placeholder, option in PLACEHOLDERS.items():
        snippet = snippet.replace(placeholder, _double_quoted(str(config.get(option))))
    return snippet


# ----------------------------------------------------------------
# Project directory
# ----------------------------------------------------------------
def project_dir_exists(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.path_exists(config.PROJECT_DIR)


def create_project_dir(ctx: StepContext) -> None:
    user = ctx.config.USERNAME
    project_dir = Path(ctx.config.PROJECT_DIR)
    ctx.run(["mkdir", "-p", str(project_dir)], as_root=True)
    ctx.run(["chown", f"{user}:{user}", str(project_dir)], as_root=True)
    logger.info(f"Created {project_dir}")


# ----------------------------------------------------------------
# tmux auto-session
# ----------------------------------------------------------------
def tmux_snippet_present(config: ConfigSnapshot, probe: StateProbe) -> bool:
    return probe.file_contains(config.bashrc_path, TMUX_MARKER)


def add_tmux_snippet(ctx: StepContext) -> None:
    upsert_block(
        ctx.config.bashrc_path,
        TMUX_MARKER,
        render_tmux_snippet(ctx.config),
        owner=ctx.config.USERNAME,
        runner=ctx.runner,
    )


STEPS = [
    Step(
        id="create_project_dir",
        description="Creating project directory",
        is_satisfied=project_dir_exists,
        apply=create_project_dir,
        requires=("create_user",),
        identity=Identity.TARGET_USER,
        enabled_by="INSTALL_TMUX",
    ),
    Step(
        id="tmux_autosession",
        description="Adding tmux auto-session to .bashrc",
        is_satisfied=tmux_snippet_present,
        apply=add_tmux_snippet,
        requires=("create_user",),
        identity=Identity.TARGET_USER,
        enabled_by="INSTALL_TMUX",
    ),
]
