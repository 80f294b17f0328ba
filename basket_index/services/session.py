"""Session context: who is signing and which ledger client they use."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from solders.keypair import Keypair

from ..interfaces.chain import LedgerClient

logger = logging.getLogger(__name__)

DEFAULT_KEYPAIR_PATH = Path.home() / ".config" / "solana" / "id.json"


def resolve_keypair_path(configured: str = "") -> Path:
    """Configured path, else ``$ANCHOR_WALLET``, else the Solana CLI default."""
    if configured:
        return Path(configured).expanduser()
    env_path = os.environ.get("ANCHOR_WALLET")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_KEYPAIR_PATH


def load_keypair(path: str | Path) -> Keypair:
    """Read a Solana CLI keypair file (JSON array of 64 bytes)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Keypair file not found: {path}")
    secret = json.loads(path.read_text())
    return Keypair.from_bytes(bytes(secret))


class Session:
    """Identity and ledger client for one user.

    Created by :meth:`attach` when an identity becomes available and
    cleared by :meth:`detach`; operations refuse to run on a detached
    session.
    """

    def __init__(self) -> None:
        self.keypair: Keypair | None = None
        self.client: LedgerClient | None = None

    @classmethod
    def attach(cls, keypair: Keypair, client: LedgerClient | None) -> "Session":
        session = cls()
        session.keypair = keypair
        session.client = client
        logger.info("Session attached for %s", session.user_address)
        return session

    def detach(self) -> None:
        if self.keypair is not None:
            logger.info("Session detached for %s", self.user_address)
        self.keypair = None
        self.client = None

    @property
    def user_address(self) -> str | None:
        if self.keypair is None:
            return None
        return str(self.keypair.pubkey())

    @property
    def attached(self) -> bool:
        return self.keypair is not None
