# infrastructure/logger.py
from __future__ import annotations

import logging
import logging.config
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from pathlib import Path

TRADE_LOGGER = "application.trading_service"

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class LoggingConfig:
    """
    level applies to the root logger. trade_log, when set, receives every
    order, trade, cancel and resolution line from the trading service in a
    file of its own, on top of whatever the root handlers get.
    """
    app_name: str = "predmarket"
    level: str = "INFO"
    log_file: Optional[str] = None
    trade_log: Optional[str] = None
    console: bool = True


def _rotating(filename: str, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "standard",
        "filename": filename,
        "maxBytes": 5_000_000,
        "backupCount": 3,
        "encoding": "utf-8",
    }


def build_dict_config(cfg: LoggingConfig) -> Dict[str, Any]:
    handlers: Dict[str, Any] = {}
    root_handlers: List[str] = []

    if cfg.console:
        # stdout belongs to the shell
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": cfg.level,
            "formatter": "standard",
            "stream": "ext://sys.stderr",
        }
        root_handlers.append("console")

    if cfg.log_file:
        handlers["file"] = _rotating(cfg.log_file, cfg.level)
        root_handlers.append("file")

    if not root_handlers:
        handlers["null"] = {"class": "logging.NullHandler"}
        root_handlers.append("null")

    loggers: Dict[str, Any] = {}
    if cfg.trade_log:
        handlers["trades"] = _rotating(cfg.trade_log, "INFO")
        loggers[TRADE_LOGGER] = {"level": "INFO", "handlers": ["trades"], "propagate": True}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": _FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"}},
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": cfg.level, "handlers": root_handlers},
    }


def configure_logging(cfg: LoggingConfig) -> None:
    """Called once, from main.py."""
    for filename in (cfg.log_file, cfg.trade_log):
        if filename:
            Path(filename).parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_dict_config(cfg))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
