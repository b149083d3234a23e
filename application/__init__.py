"""
Application layer - orchestration over the engine: trading service,
snapshot store and transaction journal.
"""
from .store import MarketStore
from .trading_service import TradingService, EventType, MarketEvent
from .journal import TransactionJournal, JournalPlayer

__all__ = [
    "MarketStore",
    "TradingService",
    "EventType",
    "MarketEvent",
    "TransactionJournal",
    "JournalPlayer",
]
