"""Logging configuration shared by batch entry points."""

import logging
from pathlib import Path
from typing import List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers kept at WARNING even when the package runs at DEBUG.
QUIET_LOGGERS = ("openpyxl", "rapidfuzz")


def resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def setup_logging(level: Union[str, int] = "INFO", log_file: Optional[Union[str, Path]] = None) -> None:
    """Configure the root logger.

    At DEBUG the merge step logs every rejected candidate and the reason a
    field winner was picked, so a run can be audited from the log alone.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
