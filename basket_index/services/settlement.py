"""Deposit / redeem orchestration with on-ledger and simulated paths.

Each operation walks ``IDLE → VALIDATING → CHECKING_CONFIG → (INITIALIZING)
→ DERIVING_ACCOUNTS → ATTEMPTING_REAL_SETTLEMENT →
(FALLING_BACK_TO_SIMULATION) → REPORTING → IDLE``.

Local validation failures stop the operation before any settlement call.
Ledger failures on the real path are downgraded to the simulated ledger and
reported as ``SIMULATED``. With ``allow_simulated_fallback`` off they are
reported as rejections with retry guidance instead.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, Awaitable, Callable, Sequence

from solders.instruction import Instruction

from ..chains.solana import program
from ..chains.solana.derivation import (
    derive_accounts,
    derive_associated_account,
    derive_config_address,
    derive_vault_authority,
)
from ..config import AppConfig
from ..errors import (
    ConfigurationError,
    OperationInProgressError,
    SettlementError,
    ValidationError,
)
from ..interfaces.chain import LedgerClient
from ..interfaces.store import BalanceStore
from ..models import (
    DerivedAccounts,
    IndexArtifact,
    IndexConfig,
    OperationKind,
    SettlementOutcome,
    SettlementResult,
    SettlementState,
)
from ..oracles.jupiter import LAMPORTS_PER_SOL
from .session import Session

logger = logging.getLogger(__name__)

SHARE_DECIMALS = 9
SHARE_BASE_UNITS = 10**SHARE_DECIMALS


def split_evenly(total: int, parts: int) -> list[int]:
    """``floor(total / parts)`` for every part; the remainder is not spent."""
    if parts <= 0:
        raise ValueError("parts must be positive")
    return [total // parts] * parts


def _to_decimal(amount: float | str) -> Decimal:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {amount}") from e
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Invalid amount: {amount}")
    return value


def _simulated_tx_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class SettlementOrchestrator:
    """Runs deposits and redeems for attached sessions, one at a time per user."""

    def __init__(
        self,
        config: AppConfig,
        store: BalanceStore,
        on_settled: Callable[[Session], Awaitable[None]] | None = None,
    ) -> None:
        self._deployment = config.index
        self._settings = config.settlement
        self._store = store
        self._on_settled = on_settled
        self._locks: dict[str, asyncio.Lock] = {}
        self._states: dict[str, SettlementState] = {}

    # ------------------------------------------------------------------
    # State tracking
    # ------------------------------------------------------------------

    def state(self, user_address: str) -> SettlementState:
        return self._states.get(user_address, SettlementState.IDLE)

    def _set_state(self, user_address: str, state: SettlementState) -> None:
        previous = self.state(user_address)
        self._states[user_address] = state
        logger.debug("%s: %s -> %s", user_address, previous.value, state.value)

    @contextlib.asynccontextmanager
    async def _single_flight(self, user_address: str) -> AsyncIterator[None]:
        """Hold the user's lock; a second caller is rejected, never queued."""
        lock = self._locks.setdefault(user_address, asyncio.Lock())
        if lock.locked():
            raise OperationInProgressError(
                "Another deposit or redeem is already in progress"
            )
        try:
            async with lock:
                yield
        finally:
            self._set_state(user_address, SettlementState.IDLE)
            self._states.pop(user_address, None)
            self._locks.pop(user_address, None)

    @staticmethod
    def _require_session(session: Session | None) -> tuple[str, LedgerClient]:
        if session is None or not session.attached:
            raise ValidationError("Please connect your wallet first")
        if session.client is None:
            raise ValidationError("Ledger client not initialized")
        return session.user_address, session.client

    # ------------------------------------------------------------------
    # Ledger reads
    # ------------------------------------------------------------------

    async def fetch_index_config(self, client: LedgerClient) -> IndexConfig | None:
        """On-chain Config for the index, or None when uninitialized.

        Malformed account data raises ValueError.
        """
        config_address = derive_config_address(
            self._deployment.index_mint, self._deployment.program_id
        ).address
        data = await client.get_account_data(config_address)
        if data is None:
            return None
        return program.decode_index_config(data)

    async def _ledger_balance(self, user: str, client: LedgerClient) -> float:
        """Index shares in the user's token account; 0 when unreadable."""
        account = derive_associated_account(user, self._deployment.index_mint)
        try:
            value = await client.get_token_balance(account)
        except Exception as e:
            logger.info("On-ledger index balance unavailable for %s: %s", user, e)
            return 0.0
        return float(value.get("uiAmount") or 0.0)

    async def index_balance(self, session: Session) -> float:
        """Index shares held on-ledger plus those held in the simulated ledger."""
        user, client = self._require_session(session)
        return await self._ledger_balance(user, client) + self._store.get(user)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def deposit(self, session: Session | None, amount_sol: float | str) -> SettlementResult:
        """Pay ``amount_sol`` SOL into the index."""
        return await self._run(OperationKind.DEPOSIT, session, amount_sol)

    async def redeem(self, session: Session | None, shares: float | str) -> SettlementResult:
        """Burn ``shares`` index shares back into the basket."""
        return await self._run(OperationKind.REDEEM, session, shares)

    async def _run(
        self, kind: OperationKind, session: Session | None, amount: float | str
    ) -> SettlementResult:
        try:
            user, client = self._require_session(session)
            async with self._single_flight(user):
                self._set_state(user, SettlementState.VALIDATING)
                if kind is OperationKind.DEPOSIT:
                    result = await self._deposit(session, user, client, amount)
                else:
                    result = await self._redeem(session, user, client, amount)
                self._set_state(user, SettlementState.REPORTING)
        except ValidationError as e:
            logger.info("%s rejected: %s", kind.value, e)
            return SettlementResult(kind, SettlementOutcome.REJECTED, str(e))
        except ConfigurationError as e:
            logger.error("%s failed: %s", kind.value, e)
            return SettlementResult(
                kind, SettlementOutcome.REJECTED, str(e), details=f"Hint: {e.hint}"
            )
        except SettlementError as e:
            logger.error("%s failed on-ledger: %s", kind.value, e)
            return SettlementResult(
                kind,
                SettlementOutcome.REJECTED,
                f"{kind.value.capitalize()} failed on-ledger",
                details=f"{e}\nNothing was settled; retry in a moment.",
            )

        await self._notify(session)
        return result

    async def _notify(self, session: Session) -> None:
        if self._on_settled is None:
            return
        try:
            await self._on_settled(session)
        except Exception as e:
            logger.error("Post-settlement refresh failed: %s", e)

    # ------------------------------------------------------------------
    # Deposit
    # ------------------------------------------------------------------

    async def _deposit(
        self, session: Session, user: str, client: LedgerClient, amount: float | str
    ) -> SettlementResult:
        amount_sol = _to_decimal(amount)
        lamports = int(amount_sol * LAMPORTS_PER_SOL)
        if lamports == 0:
            raise ValidationError(f"Invalid amount: {amount}")
        shares = lamports / self._settings.lamports_per_share

        self._set_state(user, SettlementState.CHECKING_CONFIG)
        try:
            index_config = await self.fetch_index_config(client)
        except ValueError:
            raise
        except Exception as e:
            return await self._simulate_deposit(user, amount_sol, shares, e)

        if index_config is None:
            self._set_state(user, SettlementState.INITIALIZING)
            await self._initialize(session, user, client)
            mints = self._deployment.basket.mints
        else:
            mints = index_config.active_mints
            if mints != self._deployment.basket.mints:
                logger.warning(
                    "On-chain basket differs from active basket '%s'; "
                    "using on-chain membership",
                    self._deployment.active_basket,
                )

        self._set_state(user, SettlementState.DERIVING_ACCOUNTS)
        accounts = derive_accounts(user, self._deployment, mints)

        try:
            await self._provision_accounts(session, user, client, accounts)

            self._set_state(user, SettlementState.ATTEMPTING_REAL_SETTLEMENT)
            amounts = split_evenly(lamports, len(accounts.assets))
            instruction = program.deposit_and_mint(
                self._deployment.program_id,
                user,
                self._deployment.index_mint,
                accounts,
                amounts,
            )
            signature = await client.send_and_confirm([instruction], [session.keypair])
        except Exception as e:
            return await self._simulate_deposit(user, amount_sol, shares, e)

        logger.info("Deposit of %s SOL committed: %s", amount_sol, signature)
        return SettlementResult(
            OperationKind.DEPOSIT,
            SettlementOutcome.COMMITTED,
            f"Deposited {amount_sol} SOL",
            details=self._allocation_details(shares, [a.mint for a in accounts.assets]),
            signature=signature,
            shares=shares,
        )

    async def _initialize(self, session: Session, user: str, client: LedgerClient) -> None:
        config_address = derive_config_address(
            self._deployment.index_mint, self._deployment.program_id
        ).address
        instruction = program.initialize_index(
            self._deployment.program_id,
            user,
            config_address,
            self._deployment.index_mint,
            self._deployment.basket.mints,
            self._deployment.exit_fee_bps,
        )
        try:
            signature = await client.send_and_confirm([instruction], [session.keypair])
        except Exception as e:
            raise ConfigurationError(
                f"Index is not initialized and initialization failed: {e}"
            ) from e
        logger.info("Index initialized: %s", signature)

    async def _provision_accounts(
        self,
        session: Session,
        user: str,
        client: LedgerClient,
        accounts: DerivedAccounts,
    ) -> None:
        """Create missing user and vault token accounts before depositing."""
        decimals = {a.mint: a.decimals for a in self._deployment.basket.assets}
        instructions: list[Instruction] = []

        for asset in accounts.assets:
            if not await client.account_exists(asset.user_account):
                logger.info("Creating token account %s for %s", asset.user_account, asset.mint)
                instructions.append(
                    program.create_associated_account(user, asset.user_account, user, asset.mint)
                )
                if self._settings.paper_trading:
                    amount = self._settings.test_mint_tokens * 10 ** decimals.get(asset.mint, 9)
                    instructions.append(
                        program.mint_to(asset.mint, asset.user_account, user, amount)
                    )
            if not await client.account_exists(asset.vault_account):
                logger.info("Creating vault account %s for %s", asset.vault_account, asset.mint)
                instructions.append(
                    program.create_associated_account(
                        user,
                        asset.vault_account,
                        accounts.vault_authority.address,
                        asset.mint,
                    )
                )

        if instructions:
            signature = await client.send_and_confirm(instructions, [session.keypair])
            logger.info("Provisioned %d account instruction(s): %s", len(instructions), signature)

    async def _simulate_deposit(
        self, user: str, amount_sol: Decimal, shares: float, error: Exception
    ) -> SettlementResult:
        self._fallback_allowed(OperationKind.DEPOSIT, error)
        self._set_state(user, SettlementState.FALLING_BACK_TO_SIMULATION)
        logger.warning("Real deposit failed for %s, simulating: %s", user, error)

        tx_id = _simulated_tx_id("demo_tx")
        await self._store.adjust(user, shares)
        return SettlementResult(
            OperationKind.DEPOSIT,
            SettlementOutcome.SIMULATED,
            f"Simulated deposit of {amount_sol} SOL (not settled on-ledger)",
            details=(
                self._allocation_details(shares, self._deployment.basket.mints)
                + f"\n\nOn-ledger settlement failed: {error}"
            ),
            simulated_tx_id=tx_id,
            shares=shares,
        )

    def _allocation_details(self, shares: float, mints: Sequence[str]) -> str:
        symbols = {a.mint: a.symbol for a in self._deployment.basket.assets}
        weight = 100 / len(mints) if mints else 0
        lines = [f"Received {shares:.4f} index shares representing:"]
        lines.extend(f"- {weight:.0f}% {symbols.get(m, m[:8])}" for m in mints)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    async def _redeem(
        self, session: Session, user: str, client: LedgerClient, amount: float | str
    ) -> SettlementResult:
        requested = _to_decimal(amount)
        shares = float(requested)

        on_ledger = await self._ledger_balance(user, client)
        simulated = self._store.get(user)
        balance = on_ledger + simulated
        if balance <= 0:
            raise ValidationError("You have no index shares to redeem")
        if shares > balance:
            raise ValidationError(
                f"Invalid amount! You have {balance:.4f} index shares available."
            )
        if shares > on_ledger and shares > simulated:
            raise ValidationError(
                f"Redeem at most {max(on_ledger, simulated):.4f} index shares at once "
                f"({on_ledger:.4f} on-ledger, {simulated:.4f} simulated)"
            )
        shares_in = int(requested * SHARE_BASE_UNITS)
        if shares_in == 0:
            raise ValidationError("Insufficient index shares to redeem")
        if shares > on_ledger:
            return await self._simulate_redeem(
                user,
                shares,
                SettlementError(f"Only {on_ledger:.4f} index shares are held on-ledger"),
            )

        self._set_state(user, SettlementState.CHECKING_CONFIG)
        try:
            index_config = await self.fetch_index_config(client)
        except ValueError:
            raise
        except Exception as e:
            return await self._simulate_redeem(user, shares, e)
        if index_config is None:
            return await self._simulate_redeem(
                user, shares, SettlementError("Index is not initialized on-ledger")
            )

        self._set_state(user, SettlementState.DERIVING_ACCOUNTS)
        accounts = derive_accounts(user, self._deployment, index_config.active_mints)

        try:
            self._set_state(user, SettlementState.ATTEMPTING_REAL_SETTLEMENT)
            instruction = program.redeem_to_basket(
                self._deployment.program_id,
                user,
                self._deployment.index_mint,
                accounts,
                shares_in,
            )
            signature = await client.send_and_confirm([instruction], [session.keypair])
        except Exception as e:
            return await self._simulate_redeem(user, shares, e)

        logger.info("Redeem of %.4f shares committed: %s", shares, signature)
        estimate = self.estimated_return(shares)
        return SettlementResult(
            OperationKind.REDEEM,
            SettlementOutcome.COMMITTED,
            f"Redeemed {shares:.4f} index shares",
            details=self._redeem_details(estimate),
            signature=signature,
            shares=shares,
            estimated_return=estimate,
        )

    async def _simulate_redeem(
        self, user: str, shares: float, error: Exception
    ) -> SettlementResult:
        self._fallback_allowed(OperationKind.REDEEM, error)
        if shares > self._store.get(user):
            raise SettlementError(f"redeem not settled: {error}") from error
        self._set_state(user, SettlementState.FALLING_BACK_TO_SIMULATION)
        logger.warning("Real redeem failed for %s, simulating: %s", user, error)

        tx_id = _simulated_tx_id("demo_redeem")
        await self._store.adjust(user, -shares)
        estimate = self.estimated_return(shares)
        return SettlementResult(
            OperationKind.REDEEM,
            SettlementOutcome.SIMULATED,
            f"Simulated redeem of {shares:.4f} index shares (not settled on-ledger)",
            details=self._redeem_details(estimate) + f"\n\nOn-ledger settlement failed: {error}",
            simulated_tx_id=tx_id,
            shares=shares,
            estimated_return=estimate,
        )

    def estimated_return(self, shares: float) -> float:
        """SOL returned for ``shares`` at the fixed rate, net of the exit fee."""
        gross = round(shares * self._settings.lamports_per_share)
        fee = gross * self._deployment.exit_fee_bps // 10_000
        return (gross - fee) / LAMPORTS_PER_SOL

    def _redeem_details(self, estimate: float) -> str:
        symbols = ", ".join(a.symbol for a in self._deployment.basket.assets)
        return (
            f"Estimated return: ~{estimate:.4f} SOL from {symbols}\n"
            f"Exit fee: {self._deployment.exit_fee_bps / 100:.2f}%"
        )

    # ------------------------------------------------------------------
    # Index creation
    # ------------------------------------------------------------------

    def artifact(self) -> IndexArtifact:
        """Addresses of this deployment, derived locally."""
        deployment = self._deployment
        config = derive_config_address(deployment.index_mint, deployment.program_id)
        authority = derive_vault_authority(config.address, deployment.program_id)
        return IndexArtifact(
            index_share_id=deployment.index_mint,
            config_address=config.address,
            vault_authority_address=authority.address,
            basket_members=deployment.basket.mints,
            program_id=deployment.program_id,
        )

    async def create_index(self, session: Session | None) -> IndexArtifact:
        """Initialize the index on-ledger unless its Config already exists.

        Raises ValidationError for a detached session and ConfigurationError
        when initialization fails.
        """
        user, client = self._require_session(session)
        async with self._single_flight(user):
            self._set_state(user, SettlementState.CHECKING_CONFIG)
            existing = await self.fetch_index_config(client)
            if existing is None:
                self._set_state(user, SettlementState.INITIALIZING)
                await self._initialize(session, user, client)
            else:
                logger.info(
                    "Index already initialized (%d assets, authority %s)",
                    existing.num_assets,
                    existing.authority,
                )
        return self.artifact()

    def _fallback_allowed(self, kind: OperationKind, error: Exception) -> None:
        if not self._settings.allow_simulated_fallback:
            raise SettlementError(f"{kind.value} not settled: {error}") from error

