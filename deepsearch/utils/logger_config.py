"""Logging setup shared by the CLI scripts and the API server.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached once here by whichever entry point is running.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 5


def setup_logging(level: Union[str, int] = "INFO",
                  log_dir: Optional[Union[str, Path]] = None,
                  log_file: str = "deepsearch.log") -> logging.Logger:
    """Configure the root logger with a console handler and an optional rotating file.

    Calling it twice replaces the handlers instead of duplicating output.
    """
    root = logging.getLogger()
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, "_deepsearch_handler", False):
            root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._deepsearch_handler = True
    root.addHandler(console)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / log_file, maxBytes=_MAX_LOG_BYTES,
            backupCount=_LOG_BACKUP_COUNT, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._deepsearch_handler = True
        root.addHandler(file_handler)

    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return root
