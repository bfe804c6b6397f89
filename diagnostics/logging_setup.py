from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

ROOT_LOGGER = "fplankit"
PACKAGE_LOGGERS = ("fplan_cache", "fplan_bridge", "fplan_bus", "fplan_host")

_CONFIGURED = False
_HANDLER: Optional[logging.Handler] = None


def _build_handler(log_path: Path) -> logging.Handler:
    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter(
        "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"
    )
    handler.setFormatter(formatter)
    return handler


def configure_logging(base_dir: Optional[Path] = None) -> Dict[str, str]:
    """Attach a key-value file handler to the kit loggers.

    The default configuration is installed once per process. Passing
    ``base_dir`` configures an isolated ``fplankit.test`` logger, which is
    what the tests use.
    """
    global _CONFIGURED, _HANDLER
    root = base_dir or Path("data/roaming")
    log_dir = root / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "fplankit.log"

    logger_name = ROOT_LOGGER if base_dir is None else f"{ROOT_LOGGER}.test"
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if base_dir is None and not _CONFIGURED:
        handler = _build_handler(log_path)
        logger.addHandler(handler)
        for name in PACKAGE_LOGGERS:
            package_logger = logging.getLogger(name)
            package_logger.setLevel(logging.INFO)
            package_logger.addHandler(handler)
        _HANDLER = handler
        _CONFIGURED = True
    elif base_dir is not None and not logger.handlers:
        logger.addHandler(_build_handler(log_path))

    return {
        "log_path": str(log_path),
        "format": "kv",
        "handlers": "file",
        "logger_name": logger_name,
    }


def get_logger() -> logging.Logger:
    return logging.getLogger(ROOT_LOGGER)
