import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_DIR_NAME = ".logs"
LOG_FILE_NAME = "stock_ledger.log"


def default_log_dir() -> Path:
    """Return ``.logs`` under the working directory, where ``config.ini`` is looked up too."""

    return Path.cwd() / LOG_DIR_NAME


def _configure_logging(name: str = __name__, log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure a logger with a rotating file handler and a stderr handler."""

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = (log_dir if log_dir is not None else default_log_dir()) / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize ledger log file at '{log_file}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


LOG_DIR = default_log_dir()
LOG_FILE = LOG_DIR / LOG_FILE_NAME
log = _configure_logging(log_dir=LOG_DIR)
log.debug("Logger initialized for the 'stock_ledger' package.")
