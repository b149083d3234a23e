from .config import ExchangeConfig
from .logger import LoggingConfig, configure_logging, get_logger
from .persistence import SnapshotStore

__all__ = [
    "ExchangeConfig",
    "LoggingConfig",
    "configure_logging",
    "get_logger",
    "SnapshotStore",
]
