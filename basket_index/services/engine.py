"""Client wiring — ledger, price sources, valuation and settlement for one user."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from solders.keypair import Keypair

from ..chains.solana import SolanaClient
from ..chains.solana.derivation import derive_accounts
from ..config import AppConfig
from ..interfaces.chain import LedgerClient
from ..interfaces.store import BalanceStore
from ..models import IndexArtifact, IndexSnapshot, SettlementOutcome, SettlementResult
from ..oracles import CoinGeckoClient, JupiterQuoteClient, PriceOracleAdapter
from ..storage import SimulatedLedger
from .session import Session, load_keypair, resolve_keypair_path
from .settlement import SettlementOrchestrator
from .valuation import BasketValuator, IndexRefresher

logger = logging.getLogger(__name__)


class IndexEngine:
    """Builds every component from config and exposes the user operations."""

    def __init__(
        self,
        config: AppConfig,
        client: LedgerClient | None = None,
        oracle: PriceOracleAdapter | None = None,
        store: BalanceStore | None = None,
    ) -> None:
        self._config = config

        self._client: LedgerClient = client or SolanaClient(config.ledger)

        if oracle is None:
            oracle = PriceOracleAdapter(
                CoinGeckoClient(config.oracle.spot),
                JupiterQuoteClient(config.oracle.quote, config.oracle.settlement_mint),
            )
        self._oracle = oracle

        self.store: BalanceStore = store or SimulatedLedger(
            config.settlement.simulated_ledger_path
        )
        self.valuator = BasketValuator(config, self._oracle, self._client)
        self.refresher = IndexRefresher(
            self.valuator,
            config.valuation.refresh_interval_seconds,
            on_snapshot=self._log_snapshot,
        )
        self.orchestrator = SettlementOrchestrator(
            config, self.store, on_settled=self._refresh_after_settlement
        )
        self.session = Session()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def connect(self, keypair: Keypair | None = None) -> Session:
        """Attach the configured wallet (or ``keypair``) to a new session."""
        if keypair is None:
            keypair = load_keypair(resolve_keypair_path(self._config.wallet.keypair_path))
        self.session = Session.attach(keypair, self._client)
        return self.session

    def disconnect(self) -> None:
        self.session.detach()

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def format_snapshot(self, snapshot: IndexSnapshot) -> str:
        lines = [
            f"📊 Index · basket {self._config.index.active_basket}",
            "",
            f"NAV: {snapshot.total_value:.6f} SOL · ${snapshot.total_value_reference:,.4f}",
            f"24h: {snapshot.change_24h:+.2f}%",
        ]
        if snapshot.degraded:
            lines.append("⚠️ Price source rate-limited; some values are placeholders")
        lines.append("")
        for asset in snapshot.assets:
            lines.append(
                f"  {asset.symbol:<8} {asset.price:.9f} SOL  {asset.change_24h:+.2f}%"
            )
        if self.session.attached:
            lines.append("")
            lines.append(
                f"Wallet {self._format_wallet(self.session.user_address)}: "
                f"{snapshot.settlement_balance:.4f} SOL"
            )
        lines.append("")
        lines.append(f"{self._now_str()} UTC")
        return "\n".join(lines)

    @staticmethod
    def format_result(result: SettlementResult) -> str:
        if result.outcome is SettlementOutcome.COMMITTED:
            header = f"✅ {result.message}"
            reference = f"Signature: {result.signature}"
        elif result.simulated:
            header = f"🧪 {result.message}"
            reference = f"Simulated transaction: {result.simulated_tx_id}"
        else:
            header = f"❌ {result.message}"
            reference = ""
        parts = [header]
        if result.details:
            parts.extend(["", result.details])
        if reference:
            parts.extend(["", reference])
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def _log_snapshot(self, snapshot: IndexSnapshot) -> None:
        logger.debug("Published snapshot taken at %s", snapshot.taken_at.isoformat())

    async def _refresh_after_settlement(self, session: Session) -> None:
        await self.refresher.refresh(session.user_address)
        balance = await self.orchestrator.index_balance(session)
        logger.info("Index balance after settlement: %.4f shares", balance)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def value(self) -> IndexSnapshot | None:
        return await self.refresher.refresh(self.session.user_address)

    async def watch(self, interval_seconds: int | None = None, iterations: int | None = None) -> None:
        if interval_seconds:
            self.refresher.interval = interval_seconds
        await self.refresher.run(self.session.user_address, iterations=iterations)

    async def balance(self) -> float:
        return await self.orchestrator.index_balance(self.session)

    async def deposit(self, amount_sol: float | str) -> SettlementResult:
        return await self.orchestrator.deposit(self.session, amount_sol)

    async def redeem(self, shares: float | str) -> SettlementResult:
        return await self.orchestrator.redeem(self.session, shares)

    def derived_addresses(self) -> dict[str, object]:
        """Every address the program uses for the connected user."""
        user = self.session.user_address
        artifact = self.orchestrator.artifact()
        out: dict[str, object] = artifact.to_json_dict()
        if user is None:
            return out
        accounts = derive_accounts(user, self._config.index)
        out["user"] = user
        out["userIndexAccount"] = accounts.user_index_account
        out["assets"] = [
            {
                "mint": a.mint,
                "userAccount": a.user_account,
                "vaultAccount": a.vault_account,
            }
            for a in accounts.assets
        ]
        return out

    async def init_index(self, output_path: str | Path) -> IndexArtifact:
        """Create the index if needed and write its artifact file."""
        artifact = await self.orchestrator.create_index(self.session)
        write_artifact(artifact, output_path)
        return artifact


def write_artifact(artifact: IndexArtifact, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(artifact.to_json_dict(), indent=2) + "\n")
    logger.info("Index artifact written to %s", path)
    return path
