"""Local persistence."""
from .simulated_ledger import SimulatedLedger

__all__ = ["SimulatedLedger"]
