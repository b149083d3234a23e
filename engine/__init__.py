"""
Domain layer - order books, matching, markets and the ledger.
Pure in-memory logic, zero dependencies on UI/infrastructure.
"""
from .errors import (
    ErrorKind,
    TradingError,
    InvalidInputError,
    NotFoundError,
    InsufficientFundsError,
    InsufficientPositionError,
    MarketAlreadyExistsError,
    MarketResolvedError,
    AlreadyResolvedError,
    PartialFillRejectedError,
)
from .order_book import OrderBook, Order, DepthSnapshot
from .matching_engine import MatchingEngine, Match, SweepResult
from .market import Market, MarketRegistry, MarketStatus, Outcome
from .ledger import Ledger

__all__ = [
    'ErrorKind',
    'TradingError',
    'InvalidInputError',
    'NotFoundError',
    'InsufficientFundsError',
    'InsufficientPositionError',
    'MarketAlreadyExistsError',
    'MarketResolvedError',
    'AlreadyResolvedError',
    'PartialFillRejectedError',
    'OrderBook',
    'Order',
    'DepthSnapshot',
    'MatchingEngine',
    'Match',
    'SweepResult',
    'Market',
    'MarketRegistry',
    'MarketStatus',
    'Outcome',
    'Ledger',
]
