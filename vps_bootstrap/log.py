"""Package logger: Rich console output plus a rotated, private log file."""

import datetime
import gzip
import logging
import os
import shutil
from pathlib import Path
from typing import Union

from rich.logging import RichHandler

from .ui import console

LOGGER_NAME: str = "vps_bootstrap"
DEFAULT_LOG_FILE: str = "/var/log/vps_bootstrap.log"
MAX_LOG_SIZE: int = 10 * 1024 * 1024  # 10MB


def rotate_log(log_file: Path) -> None:
    """Compress an oversized log file aside and truncate it."""
    if not log_file.is_file() or log_file.stat().st_size <= MAX_LOG_SIZE:
        return
    ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    rotated = f"{log_file}.{ts}.gz"
    with open(log_file, "rb") as fin, gzip.open(rotated, "wb") as fout:
        shutil.copyfileobj(fin, fout)
    open(log_file, "w").close()


def setup_logger(log_file: Union[str, Path] = DEFAULT_LOG_FILE) -> logging.Logger:
    """Set up the package logger with a Rich console handler and a file handler."""
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Remove any existing handlers
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()

    console_handler = RichHandler(console=console, rich_tracebacks=True, markup=False)
    console_handler.setLevel(logging.INFO)
    logger.addHandler(console_handler)

    try:
        rotate_log(log_file)
    except OSError as e:
        logger.warning(f"Failed to rotate log file {log_file}: {e}")

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    try:
        # Secure the log file
        os.chmod(str(log_file), 0o600)
    except OSError as e:
        logger.warning(f"Could not set permissions on log file {log_file}: {e}")

    return logger
