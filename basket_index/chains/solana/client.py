"""Solana JSON-RPC client with endpoint fallback and bounded confirmation."""
from __future__ import annotations

import asyncio
import base64
import logging
import ssl
from typing import Any, Sequence

import aiohttp
import certifi
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction import Transaction

from ...config import LedgerConfig
from ...errors import RpcError

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class SolanaClient:
    """Solana RPC client with automatic endpoint fallback."""

    def __init__(self, config: LedgerConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.commitment = config.commitment
        self.confirm_retries = config.confirm_retries
        self.confirm_interval = config.confirm_interval_seconds
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RpcError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, method, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RpcError(f"All RPC endpoints failed. Last error: {last_error}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_account_data(self, address: str) -> bytes | None:
        """Raw account data, or None when the account does not exist."""
        result = await self.rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if not value:
            return None
        data = value.get("data", ["", "base64"])
        return base64.b64decode(data[0])

    async def account_exists(self, address: str) -> bool:
        return await self.get_account_data(address) is not None

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        result = await self.rpc_call(
            "getBalance", [address, {"commitment": self.commitment}]
        )
        return int((result or {}).get("value", 0))

    async def get_token_balance(self, token_account: str) -> dict[str, Any]:
        """Token amount of an SPL account: ``{amount, decimals, uiAmount}``."""
        result = await self.rpc_call(
            "getTokenAccountBalance", [token_account, {"commitment": self.commitment}]
        )
        value = (result or {}).get("value")
        if value is None:
            raise RpcError(f"No token balance for {token_account}")
        return value

    async def get_latest_blockhash(self) -> Hash:
        result = await self.rpc_call(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        return Hash.from_string(result["value"]["blockhash"])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def send_transaction(self, transaction: Transaction) -> str:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        return await self.rpc_call(
            "sendTransaction",
            [
                encoded,
                {"encoding": "base64", "preflightCommitment": self.commitment},
            ],
        )

    async def get_signature_status(self, signature: str) -> dict[str, Any] | None:
        result = await self.rpc_call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = (result or {}).get("value") or [None]
        return statuses[0]

    async def confirm_transaction(self, signature: str) -> None:
        """Poll until the signature reaches the configured commitment.

        Raises RpcError if the transaction failed or did not confirm within
        ``confirm_retries`` polls.
        """
        wanted = _COMMITMENT_RANK.get(self.commitment, 1)
        for attempt in range(1, self.confirm_retries + 1):
            status = await self.get_signature_status(signature)
            if status is not None:
                if status.get("err"):
                    raise RpcError(f"Transaction {signature} failed: {status['err']}")
                reached = _COMMITMENT_RANK.get(status.get("confirmationStatus") or "", -1)
                if reached >= wanted:
                    logger.info("Transaction %s %s", signature, status["confirmationStatus"])
                    return
            logger.debug(
                "Waiting for %s (%d/%d)", signature, attempt, self.confirm_retries
            )
            await asyncio.sleep(self.confirm_interval)

        raise RpcError(
            f"Transaction {signature} not {self.commitment} after "
            f"{self.confirm_retries} checks"
        )

    async def send_and_confirm(
        self, instructions: Sequence[Instruction], signers: Sequence[Keypair]
    ) -> str:
        """Sign with ``signers`` (first one pays), submit and confirm."""
        if not signers:
            raise ValueError("At least one signer is required")
        blockhash = await self.get_latest_blockhash()
        message = Message(list(instructions), signers[0].pubkey())
        transaction = Transaction(list(signers), message, blockhash)

        signature = await self.send_transaction(transaction)
        logger.info("Submitted transaction %s", signature)
        await self.confirm_transaction(signature)
        return signature
