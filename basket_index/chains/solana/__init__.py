"""Solana ledger client, address derivation and program codec."""
from .client import SolanaClient

__all__ = ["SolanaClient"]
