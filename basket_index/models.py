"""Data models — all frozen (immutable)."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

BASKET_MEMBER = "basket_member"


@dataclass(frozen=True)
class Asset:
    """Single basket member as seen by one valuation cycle."""

    mint: str
    symbol: str
    price: float = 0.0
    change_24h: float = 0.0
    role: str = BASKET_MEMBER


@dataclass(frozen=True)
class IndexSnapshot:
    """Index valuation published by one refresh.

    ``total_value`` is in SOL, ``total_value_reference`` in the reference
    fiat unit (USD).
    """

    total_value: float
    total_value_reference: float
    change_24h: float
    assets: tuple[Asset, ...] = ()
    reference_price: float = 0.0
    settlement_balance: float = 0.0
    degraded: bool = False
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class IndexConfig:
    """Decoded on-chain ``Config`` account of the settlement program."""

    authority: str
    index_mint: str
    exit_fee_bps: int
    num_assets: int
    bump: int
    total_shares: int
    asset_mints: tuple[str, ...]

    @property
    def active_mints(self) -> tuple[str, ...]:
        return self.asset_mints[: self.num_assets]


@dataclass(frozen=True)
class DerivedAddress:
    address: str
    bump: int


@dataclass(frozen=True)
class AssetAccounts:
    """Per-member account triple, in the order the program expects."""

    mint: str
    user_account: str
    vault_account: str


@dataclass(frozen=True)
class DerivedAccounts:
    """Every account a deposit or redeem needs for one user."""

    config: DerivedAddress
    vault_authority: DerivedAddress
    user_index_account: str
    assets: tuple[AssetAccounts, ...] = ()


class OperationKind(str, enum.Enum):
    DEPOSIT = "deposit"
    REDEEM = "redeem"


class SettlementOutcome(str, enum.Enum):
    """How an operation ended.

    ``SIMULATED`` means only the local simulated ledger changed; no economic
    effect happened on-chain.
    """

    COMMITTED = "committed"
    SIMULATED = "simulated"
    REJECTED = "rejected"


class SettlementState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING_CONFIG = "checking_config"
    INITIALIZING = "initializing"
    DERIVING_ACCOUNTS = "deriving_accounts"
    ATTEMPTING_REAL_SETTLEMENT = "attempting_real_settlement"
    FALLING_BACK_TO_SIMULATION = "falling_back_to_simulation"
    REPORTING = "reporting"


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of a single deposit or redeem attempt."""

    kind: OperationKind
    outcome: SettlementOutcome
    message: str
    details: str = ""
    signature: str | None = None
    simulated_tx_id: str | None = None
    shares: float = 0.0
    estimated_return: float = 0.0

    @property
    def success(self) -> bool:
        return self.outcome is not SettlementOutcome.REJECTED

    @property
    def simulated(self) -> bool:
        return self.outcome is SettlementOutcome.SIMULATED


@dataclass(frozen=True)
class IndexArtifact:
    """Record written once when the index is created."""

    index_share_id: str
    config_address: str
    vault_authority_address: str
    basket_members: tuple[str, ...]
    program_id: str

    def to_json_dict(self) -> dict[str, object]:
        return {
            "indexShareId": self.index_share_id,
            "configAddress": self.config_address,
            "vaultAuthorityAddress": self.vault_authority_address,
            "basketMembers": list(self.basket_members),
            "programId": self.program_id,
        }
