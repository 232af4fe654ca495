"""
Logging setup for the StreamVio service.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from .config import LoggingConfig

FORMATS = {
    "simple": "%(asctime)s %(levelname)s %(name)s: %(message)s",
    "detailed": "%(asctime)s %(levelname)s [%(process)d] %(name)s:%(lineno)d: %(message)s",
}


def setup_logging(config: LoggingConfig) -> Optional[Path]:
    """Configure the root logger from the logging config section.

    Returns the log file path when file logging is enabled.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(
        fmt=FORMATS.get(config.format, FORMATS["simple"]),
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    log_file = None
    if config.file:
        log_file = Path(config.file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        root.info("Logging to %s", log_file)

    # Per-request access logs are noisy next to job progress
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return log_file
