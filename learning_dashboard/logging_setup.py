"""Root logger configuration for the web app and the CLI commands."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union


class _ThirdPartyFilter(logging.Filter):
    """Keep learning_dashboard logs; only warnings and up from everything else."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith('learning_dashboard'):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[Union[str, Path]] = None) -> None:
    """Configure the root logger. Call once, before the first request."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(min(level, logging.DEBUG) if log_file else level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(
        fmt='%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(fmt)
    console.addFilter(_ThirdPartyFilter())
    root.addHandler(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_path), encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    logging.captureWarnings(True)
