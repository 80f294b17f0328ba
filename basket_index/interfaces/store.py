"""Balance store protocol — simulated share balances keyed by user address."""
from typing import Protocol


class BalanceStore(Protocol):
    def get(self, user_address: str) -> float: ...

    def set(self, user_address: str, value: float) -> float: ...

    async def adjust(self, user_address: str, delta: float) -> float: ...
