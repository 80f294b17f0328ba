"""Program-derived and associated-token address derivation.

Everything here is a pure function of its inputs: the same seeds and program
always give the same address and bump, so no directory lookup is ever needed
to find the config, vault authority or token accounts of a user.
"""
from __future__ import annotations

from typing import Sequence

from solders.pubkey import Pubkey

from ...config import IndexDeployment
from ...errors import DerivationError
from ...models import AssetAccounts, DerivedAccounts, DerivedAddress

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)

CONFIG_SEED = b"config"
VAULT_AUTHORITY_SEED = b"vault_authority"

MAX_SEED_LEN = 32
MAX_SEEDS = 16


def to_pubkey(value: str | Pubkey) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise DerivationError(f"Malformed address '{value}': {e}") from e


def find_program_address(
    seeds: Sequence[bytes], program_id: str | Pubkey
) -> DerivedAddress:
    """Highest-bump off-curve address for ``seeds`` under ``program_id``."""
    program = to_pubkey(program_id)
    if len(seeds) > MAX_SEEDS - 1:
        raise DerivationError(f"Too many seeds: {len(seeds)}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise DerivationError(f"Seed longer than {MAX_SEED_LEN} bytes: {seed!r}")

    try:
        address, bump = Pubkey.find_program_address(list(seeds), program)
    except ValueError as e:
        raise DerivationError(f"No viable bump seed for program {program}: {e}") from e
    return DerivedAddress(address=str(address), bump=bump)


def derive_config_address(index_mint: str, program_id: str) -> DerivedAddress:
    return find_program_address(
        [CONFIG_SEED, bytes(to_pubkey(index_mint))], program_id
    )


def derive_vault_authority(config_address: str, program_id: str) -> DerivedAddress:
    return find_program_address(
        [VAULT_AUTHORITY_SEED, bytes(to_pubkey(config_address))], program_id
    )


def derive_associated_account(
    owner: str, mint: str, allow_off_curve_owner: bool = False
) -> str:
    """Associated token account of ``owner`` for ``mint``.

    Owners that are themselves derived addresses (the vault authority) must
    pass ``allow_off_curve_owner=True``.
    """
    owner_key = to_pubkey(owner)
    if not allow_off_curve_owner and not owner_key.is_on_curve():
        raise DerivationError(
            f"Owner {owner} is off-curve; pass allow_off_curve_owner=True"
        )
    derived = find_program_address(
        [bytes(owner_key), bytes(TOKEN_PROGRAM_ID), bytes(to_pubkey(mint))],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return derived.address


def derive_accounts(
    user: str, deployment: IndexDeployment, mints: Sequence[str] | None = None
) -> DerivedAccounts:
    """All accounts a settlement needs for ``user``, in basket order.

    ``mints`` defaults to the active basket; callers pass the on-chain
    membership when it is already known.
    """
    config = derive_config_address(deployment.index_mint, deployment.program_id)
    vault_authority = derive_vault_authority(config.address, deployment.program_id)

    members = mints if mints is not None else deployment.basket.mints
    assets = tuple(
        AssetAccounts(
            mint=mint,
            user_account=derive_associated_account(user, mint),
            vault_account=derive_associated_account(
                vault_authority.address, mint, allow_off_curve_owner=True
            ),
        )
        for mint in members
    )

    return DerivedAccounts(
        config=config,
        vault_authority=vault_authority,
        user_index_account=derive_associated_account(user, deployment.index_mint),
        assets=assets,
    )
