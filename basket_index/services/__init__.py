"""Service modules"""
from .engine import IndexEngine
from .session import Session
from .settlement import SettlementOrchestrator
from .valuation import BasketValuator, IndexRefresher

__all__ = [
    "BasketValuator",
    "IndexEngine",
    "IndexRefresher",
    "Session",
    "SettlementOrchestrator",
]
