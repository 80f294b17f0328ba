"""Shared test fixtures and sample data."""
from __future__ import annotations

import json
import textwrap
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair

from basket_index.config import (
    AppConfig,
    AssetConfig,
    BasketConfig,
    IndexDeployment,
    LedgerConfig,
    SettlementConfig,
    WalletConfig,
)
from basket_index.errors import RpcError
from basket_index.storage import SimulatedLedger

PROGRAM_ID = "BKrYs7V1WMXEHYxr61FdUK9wHKrBqrzSzYmNRegts1mG"
INDEX_MINT = "2BJonFYA2Qd9kgX35oRe71XeU61bxhSJ39shA44EBUSu"

DEVNET_ASSETS = (
    AssetConfig("BONK", "BbjYpudvUZySAVXokYt1ARmiZfmvRUtB79HY4CwJz3XF", "bonk"),
    AssetConfig("WIF", "9heNML9CuFqpyiCCaPEK13ZUCSb5Dw2piwJNdY6ZnkRB", "dogwifcoin"),
    AssetConfig("TRUMP", "3kZXRr2cyBbiHzx6n7f1iWaCo4BmyXhtqQAh7vbnDGEv", "maga"),
    AssetConfig("POPCAT", "4CgrgJV7fHnF3QzJAUYCoBfWEGtngjko91TucszcRcXy", "popcat"),
    AssetConfig("BOME", "4k6qsq5wutfzpJ8bwRSZGXta5kZyGXEkEbynGZgVgmFZ", "book-of-meme"),
)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_ledger_config() -> LedgerConfig:
    return LedgerConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        confirm_retries=3,
        confirm_interval_seconds=0,
    )


@pytest.fixture()
def sample_deployment() -> IndexDeployment:
    return IndexDeployment(
        program_id=PROGRAM_ID,
        index_mint=INDEX_MINT,
        exit_fee_bps=50,
        active_basket="devnet-v2",
        baskets={"devnet-v2": BasketConfig(version="devnet-v2", assets=DEVNET_ASSETS)},
    )


@pytest.fixture()
def sample_app_config(
    sample_ledger_config: LedgerConfig,
    sample_deployment: IndexDeployment,
    tmp_path: Path,
) -> AppConfig:
    return AppConfig(
        ledger=sample_ledger_config,
        index=sample_deployment,
        settlement=SettlementConfig(
            simulated_ledger_path=str(tmp_path / "balances.json"),
        ),
        wallet=WalletConfig(keypair_path=str(tmp_path / "id.json")),
    )


# ---------------------------------------------------------------------------
# Identity and ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def keypair() -> Keypair:
    return Keypair.from_seed(bytes(range(32)))


@pytest.fixture()
def keypair_file(keypair: Keypair, tmp_path: Path) -> Path:
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(keypair))))
    return path


@pytest.fixture()
def ledger_client() -> AsyncMock:
    """Ledger client whose every call fails like an unreachable RPC."""
    client = AsyncMock()
    client.get_account_data = AsyncMock(return_value=None)
    client.account_exists = AsyncMock(return_value=True)
    client.get_balance = AsyncMock(return_value=2_000_000_000)
    client.get_token_balance = AsyncMock(side_effect=RpcError("account not found"))
    client.send_and_confirm = AsyncMock(side_effect=RpcError("All RPC endpoints failed"))
    return client


@pytest.fixture()
def simulated_ledger(tmp_path: Path) -> SimulatedLedger:
    return SimulatedLedger(tmp_path / "balances.json")


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    ledger:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    index:
      program_id: "BKrYs7V1WMXEHYxr61FdUK9wHKrBqrzSzYmNRegts1mG"
      index_mint: "2BJonFYA2Qd9kgX35oRe71XeU61bxhSJ39shA44EBUSu"
      exit_fee_bps: 50
      active_basket: devnet-v2
      baskets:
        mainnet-v1:
          - {symbol: BONK, mint: "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", coingecko_id: bonk, decimals: 5}
          - {symbol: WIF, mint: "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", coingecko_id: dogwifcoin, decimals: 6}
        devnet-v2:
          - {symbol: BONK, mint: "BbjYpudvUZySAVXokYt1ARmiZfmvRUtB79HY4CwJz3XF", coingecko_id: bonk}
          - {symbol: WIF, mint: "9heNML9CuFqpyiCCaPEK13ZUCSb5Dw2piwJNdY6ZnkRB", coingecko_id: dogwifcoin}
          - {symbol: TRUMP, mint: "3kZXRr2cyBbiHzx6n7f1iWaCo4BmyXhtqQAh7vbnDGEv", coingecko_id: maga}
    oracle:
      spot:
        base_url: "https://coingecko.example.com/api/v3"
      quote:
        base_url: "https://quote.example.com/v6"
        slippage_bps: 50
    valuation:
      refresh_interval_seconds: 15
    settlement:
      lamports_per_share: 100000000
      allow_simulated_fallback: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
