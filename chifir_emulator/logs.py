"""
Chifir Emulator — Logging Setup

One place to configure the `chifir` logger hierarchy. Modules only ever do
`log = logging.getLogger(__name__)`; the CLI calls setup_logging() once.

Console output goes through rich's RichHandler; an optional plain log file
captures everything at DEBUG with the source location of each record.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def default_log_file(log_dir: Union[str, Path], name: str = "chifir") -> Path:
    """`<log_dir>/<name>_YYYYMMDD_HHMMSS.log`, creating the directory."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    return log_dir / f"{name}_{ts}.log"


def setup_logging(
    name: Optional[str] = None,
    level: int = logging.DEBUG,
    console_level: int = logging.WARNING,
    log_file: Optional[Union[str, Path]] = None,
    rich_console: bool = True,
) -> logging.Logger:
    """
    Configure and return the logger called `name`. The default (None)
    configures the root logger, which collects records from both
    chifir_emulator and chifir_compiler.

    Calling it again for a logger that already has handlers is a no-op,
    so library users who configured logging themselves are left alone.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(level)

    if log_file is not None:
        fh = logging.FileHandler(str(log_file), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATEFMT))
        logger.addHandler(fh)

    if rich_console:
        # stdout may be carrying sixel frames
        ch = RichHandler(
            console=Console(stderr=True),
            level=console_level,
            show_time=True,
            show_path=False,
            markup=True,
            rich_tracebacks=True,
        )
    else:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S",
        ))
    ch.setLevel(console_level)
    logger.addHandler(ch)

    logger.debug("logger %s initialised (console=%s, file=%s)",
                 name or "root", logging.getLevelName(console_level), log_file)
    return logger
