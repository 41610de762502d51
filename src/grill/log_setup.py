"""Logging setup.

Sessions put the terminal into raw mode, so log records only ever go to a
rotating file under ``.grill/logs``.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union


LOG_FILE_NAME = "grill.log"


class ProjectFilter(logging.Filter):
    def __init__(self, project_name: str):
        super().__init__()
        self.project_name = project_name

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(self.project_name) \
            or record.name == "__main__"


def setup_logging(log_dir: Union[Path, str], level: Union[int, str] = logging.INFO) -> Path:
    """Send grill log records to ``<log_dir>/grill.log``.

    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(threadName)s - %(filename)s:%(lineno)d - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5*1024*1024,
        backupCount=3,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    file_handler.addFilter(ProjectFilter("grill"))
    root_logger.addHandler(file_handler)

    return log_file
