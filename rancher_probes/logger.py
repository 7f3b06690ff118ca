import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

from rich.console import Console
from rich.highlighter import NullHighlighter
from rich.markup import escape

LEVEL_STYLES: Dict[int, str] = {
    logging.DEBUG: "dim white",
    logging.INFO: "blue",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}

FILE_LOG_FORMAT = "[%(levelname)s] %(message)s"


class ProbeLogHandler(logging.Handler):
    """Prints "HH:MM:SS LEVEL message" through a rich Console, coloring only the level."""

    def __init__(self, level=logging.NOTSET, console: Optional[Console] = None):
        super().__init__(level)
        self.console = console or Console(highlighter=NullHighlighter(), file=sys.stdout)

    def emit(self, record):
        try:
            style = LEVEL_STYLES.get(record.levelno, "white")
            stamp = f"{datetime.fromtimestamp(record.created):%H:%M:%S}"
            # Queries such as "?filter=..." and pod names may contain brackets.
            self.console.print(
                f"[dim white]{stamp}[/dim white] [{style}]{record.levelname}[/{style}] "
                f"{escape(record.getMessage())}",
                highlight=False,
            )
        except Exception:
            self.handleError(record)


def get_logger(
    name: str = "rancher_probes",
    debug: bool = False,
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Return a logger that prints to the console and, optionally, to a run log file.

    Handlers from an earlier call with the same name are closed and replaced, so each
    command run writes to its own log directory.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    logger.addHandler(ProbeLogHandler())
    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    return logger
