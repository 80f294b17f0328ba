"""Ledger client protocol — Solana JSON-RPC abstraction."""
from typing import Any, Protocol, Sequence

from solders.instruction import Instruction
from solders.keypair import Keypair


class LedgerClient(Protocol):
    """Abstract interface for ledger reads and transaction submission."""

    async def get_account_data(self, address: str) -> bytes | None: ...

    async def account_exists(self, address: str) -> bool: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_token_balance(self, token_account: str) -> dict[str, Any]: ...

    async def send_and_confirm(
        self, instructions: Sequence[Instruction], signers: Sequence[Keypair]
    ) -> str: ...
