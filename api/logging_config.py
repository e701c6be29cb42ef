"""Logging for the AdScout API process.

Request and route logs go through stdlib ``logging`` under the ``adscout``
namespace. The pipeline, supervisor and ad library clients log through loguru;
their records land in a daily ``pipeline_*.log`` next to ``adscout.log``.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from loguru import logger as pipeline_logger

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))

_configured = False
_pipeline_sink_id: int | None = None


def setup_logging(log_dir: Path | None = None):
    """Attach console and file handlers once per process."""
    global _configured, _pipeline_sink_id
    if _configured:
        return
    _configured = True

    log_dir = log_dir or LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, LOG_LEVEL, logging.INFO)

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(fmt)
    api_file = RotatingFileHandler(
        log_dir / "adscout.log", maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8",
    )
    api_file.setFormatter(fmt)

    app_logger = logging.getLogger("adscout")
    app_logger.setLevel(level)
    app_logger.addHandler(console)
    app_logger.addHandler(api_file)
    app_logger.propagate = False

    _pipeline_sink_id = pipeline_logger.add(
        str(log_dir / "pipeline_{time:YYYY-MM-DD}.log"),
        rotation="1 day",
        retention="7 days",
        level="DEBUG",
        encoding="utf-8",
    )

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
