"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
MAX_BASKET_ASSETS = 5
PAPER_TRADING_ENV = "INDEX_PAPER_TRADING"

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    commitment: str = "confirmed"
    confirm_retries: int = 5
    confirm_interval_seconds: float = 2.0


@dataclass(frozen=True)
class AssetConfig:
    symbol: str = ""
    mint: str = ""
    coingecko_id: str = ""
    decimals: int = 9


@dataclass(frozen=True)
class BasketConfig:
    version: str = ""
    assets: tuple[AssetConfig, ...] = ()

    @property
    def mints(self) -> tuple[str, ...]:
        return tuple(a.mint for a in self.assets)


@dataclass(frozen=True)
class IndexDeployment:
    program_id: str = ""
    index_mint: str = ""
    exit_fee_bps: int = 50
    active_basket: str = ""
    baskets: dict[str, BasketConfig] = field(default_factory=dict)

    @property
    def basket(self) -> BasketConfig:
        """The one basket version operations run against."""
        return self.baskets[self.active_basket]


@dataclass(frozen=True)
class SpotSourceConfig:
    base_url: str = "https://api.coingecko.com/api/v3"
    vs_currency: str = "usd"
    timeout: int = 10


@dataclass(frozen=True)
class QuoteSourceConfig:
    base_url: str = "https://quote-api.jup.ag/v6"
    notional: int = 1_000_000_000
    slippage_bps: int = 100
    timeout: int = 10


@dataclass(frozen=True)
class OracleConfig:
    spot: SpotSourceConfig = field(default_factory=SpotSourceConfig)
    quote: QuoteSourceConfig = field(default_factory=QuoteSourceConfig)
    settlement_mint: str = SOL_MINT
    settlement_coingecko_id: str = "solana"


@dataclass(frozen=True)
class ValuationConfig:
    refresh_interval_seconds: int = 30


@dataclass(frozen=True)
class SettlementConfig:
    lamports_per_share: int = 100_000_000
    simulated_ledger_path: str = ".basket_index/simulated_balances.json"
    allow_simulated_fallback: bool = True
    test_mint_tokens: int = 1000
    paper_trading: bool = False


@dataclass(frozen=True)
class WalletConfig:
    keypair_path: str = ""


@dataclass(frozen=True)
class AppConfig:
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    index: IndexDeployment = field(default_factory=IndexDeployment)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    valuation: ValuationConfig = field(default_factory=ValuationConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    return LedgerConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        commitment=raw.get("commitment", "confirmed"),
        confirm_retries=int(raw.get("confirm_retries", 5)),
        confirm_interval_seconds=float(raw.get("confirm_interval_seconds", 2.0)),
    )


def _build_baskets(raw: dict[str, Any]) -> dict[str, BasketConfig]:
    baskets: dict[str, BasketConfig] = {}
    for version, members in raw.items():
        baskets[version] = BasketConfig(
            version=version,
            assets=tuple(
                AssetConfig(
                    symbol=m.get("symbol", ""),
                    mint=m.get("mint", ""),
                    coingecko_id=m.get("coingecko_id", ""),
                    decimals=int(m.get("decimals", 9)),
                )
                for m in members or []
            ),
        )
    return baskets


def _build_index(raw: dict[str, Any]) -> IndexDeployment:
    return IndexDeployment(
        program_id=raw.get("program_id", ""),
        index_mint=raw.get("index_mint", ""),
        exit_fee_bps=int(raw.get("exit_fee_bps", 50)),
        active_basket=str(raw.get("active_basket", "")),
        baskets=_build_baskets(raw.get("baskets", {})),
    )


def _build_oracle(raw: dict[str, Any]) -> OracleConfig:
    spot = raw.get("spot", {})
    quote = raw.get("quote", {})
    return OracleConfig(
        spot=SpotSourceConfig(
            base_url=spot.get("base_url", SpotSourceConfig.base_url),
            vs_currency=spot.get("vs_currency", "usd"),
            timeout=int(spot.get("timeout", 10)),
        ),
        quote=QuoteSourceConfig(
            base_url=quote.get("base_url", QuoteSourceConfig.base_url),
            notional=int(quote.get("notional", 1_000_000_000)),
            slippage_bps=int(quote.get("slippage_bps", 100)),
            timeout=int(quote.get("timeout", 10)),
        ),
        settlement_mint=raw.get("settlement_mint", SOL_MINT),
        settlement_coingecko_id=raw.get("settlement_coingecko_id", "solana"),
    )


def _build_valuation(raw: dict[str, Any]) -> ValuationConfig:
    return ValuationConfig(
        refresh_interval_seconds=int(raw.get("refresh_interval_seconds", 30)),
    )


def _build_settlement(raw: dict[str, Any]) -> SettlementConfig:
    # Test-balance provisioning is only ever switched on from the environment.
    return SettlementConfig(
        lamports_per_share=int(raw.get("lamports_per_share", 100_000_000)),
        simulated_ledger_path=raw.get(
            "simulated_ledger_path", SettlementConfig.simulated_ledger_path
        ),
        allow_simulated_fallback=bool(raw.get("allow_simulated_fallback", True)),
        test_mint_tokens=int(raw.get("test_mint_tokens", 1000)),
        paper_trading=_env_flag(PAPER_TRADING_ENV),
    )


def _build_wallet(raw: dict[str, Any]) -> WalletConfig:
    return WalletConfig(keypair_path=raw.get("keypair_path", "") or "")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        ledger=_build_ledger(raw.get("ledger", {})),
        index=_build_index(raw.get("index", {})),
        oracle=_build_oracle(raw.get("oracle", {})),
        valuation=_build_valuation(raw.get("valuation", {})),
        settlement=_build_settlement(raw.get("settlement", {})),
        wallet=_build_wallet(raw.get("wallet", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    if cfg.settlement.paper_trading:
        logger.warning(
            "%s is set: test balances will be minted into missing accounts",
            PAPER_TRADING_ENV,
        )
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.ledger.rpc_endpoints:
        raise ValueError("At least one ledger RPC endpoint must be configured")

    index = cfg.index
    if not index.program_id:
        raise ValueError("index.program_id is required")
    if not index.index_mint:
        raise ValueError("index.index_mint is required")
    if not 0 <= index.exit_fee_bps <= 10_000:
        raise ValueError(f"exit_fee_bps out of range: {index.exit_fee_bps}")

    if index.active_basket not in index.baskets:
        raise ValueError(
            f"Active basket '{index.active_basket}' is not a configured basket version"
        )

    for version, basket in index.baskets.items():
        if not 0 < len(basket.assets) <= MAX_BASKET_ASSETS:
            raise ValueError(
                f"Basket '{version}' must have 1..{MAX_BASKET_ASSETS} assets, "
                f"got {len(basket.assets)}"
            )
        mints = basket.mints
        if any(not m for m in mints):
            raise ValueError(f"Basket '{version}' has an asset without a mint")
        if len(set(mints)) != len(mints):
            raise ValueError(f"Basket '{version}' lists a mint more than once")

    if cfg.settlement.lamports_per_share <= 0:
        raise ValueError("settlement.lamports_per_share must be positive")
    if cfg.oracle.quote.notional <= 0:
        raise ValueError("oracle.quote.notional must be positive")
    if cfg.valuation.refresh_interval_seconds <= 0:
        raise ValueError("valuation.refresh_interval_seconds must be positive")
