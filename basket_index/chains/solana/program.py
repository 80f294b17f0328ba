"""Instruction encoding and account decoding for the index settlement program.

The program is an Anchor program: instruction data starts with the first
eight bytes of ``sha256("global:<name>")`` followed by Borsh-encoded args,
and accounts start with ``sha256("account:<Type>")[:8]``.
"""
from __future__ import annotations

import hashlib
import struct
from typing import Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from ...config import MAX_BASKET_ASSETS
from ...models import DerivedAccounts, IndexConfig
from .derivation import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID, to_pubkey

# authority, index_mint, exit_fee_bps, num_assets, bump, total_shares, assets
_CONFIG_LAYOUT = struct.Struct(f"<32s32sHBBQ{32 * MAX_BASKET_ASSETS}s")

_SPL_MINT_TO = 7
_ATA_CREATE_IDEMPOTENT = 1


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


CONFIG_DISCRIMINATOR = account_discriminator("Config")


def decode_index_config(data: bytes) -> IndexConfig:
    """Decode a raw ``Config`` account. Raises ValueError on malformed data."""
    if data[:8] != CONFIG_DISCRIMINATOR:
        raise ValueError("Account is not an index Config")
    body = data[8 : 8 + _CONFIG_LAYOUT.size]
    if len(body) < _CONFIG_LAYOUT.size:
        raise ValueError(
            f"Config account too short: {len(data)} bytes, "
            f"need {8 + _CONFIG_LAYOUT.size}"
        )

    authority, index_mint, fee, num_assets, bump, total, assets_raw = (
        _CONFIG_LAYOUT.unpack(body)
    )
    if not 0 < num_assets <= MAX_BASKET_ASSETS:
        raise ValueError(f"Config reports {num_assets} assets")

    mints = tuple(
        str(Pubkey(assets_raw[i * 32 : (i + 1) * 32]))
        for i in range(MAX_BASKET_ASSETS)
    )
    return IndexConfig(
        authority=str(Pubkey(authority)),
        index_mint=str(Pubkey(index_mint)),
        exit_fee_bps=fee,
        num_assets=num_assets,
        bump=bump,
        total_shares=total,
        asset_mints=mints,
    )


def encode_index_config(config: IndexConfig) -> bytes:
    """Inverse of :func:`decode_index_config`; used by fixtures and tooling."""
    assets = b"".join(bytes(to_pubkey(m)) for m in config.asset_mints)
    return CONFIG_DISCRIMINATOR + _CONFIG_LAYOUT.pack(
        bytes(to_pubkey(config.authority)),
        bytes(to_pubkey(config.index_mint)),
        config.exit_fee_bps,
        config.num_assets,
        config.bump,
        config.total_shares,
        assets,
    )


# ---------------------------------------------------------------------------
# Program instructions
# ---------------------------------------------------------------------------


def initialize_index(
    program_id: str,
    authority: str,
    config: str,
    index_mint: str,
    basket_mints: Sequence[str],
    exit_fee_bps: int,
) -> Instruction:
    """Create the program's Config for ``index_mint``.

    The program takes a fixed five-slot array; unused slots are zero keys.
    """
    if not 0 < len(basket_mints) <= MAX_BASKET_ASSETS:
        raise ValueError(f"Basket must have 1..{MAX_BASKET_ASSETS} members")
    padded = list(basket_mints) + [str(Pubkey.default())] * (
        MAX_BASKET_ASSETS - len(basket_mints)
    )
    data = (
        instruction_discriminator("initialize_index")
        + b"".join(bytes(to_pubkey(m)) for m in padded)
        + struct.pack("<BH", len(basket_mints), exit_fee_bps)
    )
    accounts = [
        AccountMeta(to_pubkey(authority), is_signer=True, is_writable=True),
        AccountMeta(to_pubkey(config), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(index_mint), is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(to_pubkey(program_id), data, accounts)


def deposit_and_mint(
    program_id: str,
    depositor: str,
    index_mint: str,
    accounts: DerivedAccounts,
    amounts: Sequence[int],
) -> Instruction:
    if len(amounts) != len(accounts.assets):
        raise ValueError(
            f"{len(amounts)} amounts for {len(accounts.assets)} basket members"
        )
    data = (
        instruction_discriminator("deposit_and_mint")
        + struct.pack("<I", len(amounts))
        + b"".join(struct.pack("<Q", a) for a in amounts)
    )
    metas = [
        AccountMeta(to_pubkey(depositor), is_signer=True, is_writable=True),
        AccountMeta(to_pubkey(accounts.config.address), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(index_mint), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(accounts.vault_authority.address), is_signer=False, is_writable=False),
        AccountMeta(to_pubkey(accounts.user_index_account), is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    # Remaining accounts: (user ATA, vault ATA, mint) per member, basket order.
    for asset in accounts.assets:
        metas.append(AccountMeta(to_pubkey(asset.user_account), is_signer=False, is_writable=True))
        metas.append(AccountMeta(to_pubkey(asset.vault_account), is_signer=False, is_writable=True))
        metas.append(AccountMeta(to_pubkey(asset.mint), is_signer=False, is_writable=False))
    return Instruction(to_pubkey(program_id), data, metas)


def redeem_to_basket(
    program_id: str,
    depositor: str,
    index_mint: str,
    accounts: DerivedAccounts,
    shares_in: int,
) -> Instruction:
    data = instruction_discriminator("redeem_to_basket") + struct.pack("<Q", shares_in)
    metas = [
        AccountMeta(to_pubkey(depositor), is_signer=True, is_writable=True),
        AccountMeta(to_pubkey(accounts.config.address), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(index_mint), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(accounts.vault_authority.address), is_signer=False, is_writable=False),
        AccountMeta(to_pubkey(accounts.user_index_account), is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    # Remaining accounts: (user ATA, vault ATA) per member.
    for asset in accounts.assets:
        metas.append(AccountMeta(to_pubkey(asset.user_account), is_signer=False, is_writable=True))
        metas.append(AccountMeta(to_pubkey(asset.vault_account), is_signer=False, is_writable=True))
    return Instruction(to_pubkey(program_id), data, metas)


# ---------------------------------------------------------------------------
# SPL token helpers
# ---------------------------------------------------------------------------


def create_associated_account(
    payer: str, associated_account: str, owner: str, mint: str
) -> Instruction:
    """Idempotent create of an associated token account."""
    metas = [
        AccountMeta(to_pubkey(payer), is_signer=True, is_writable=True),
        AccountMeta(to_pubkey(associated_account), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(owner), is_signer=False, is_writable=False),
        AccountMeta(to_pubkey(mint), is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID, bytes([_ATA_CREATE_IDEMPOTENT]), metas
    )


def mint_to(mint: str, destination: str, authority: str, amount: int) -> Instruction:
    data = struct.pack("<BQ", _SPL_MINT_TO, amount)
    metas = [
        AccountMeta(to_pubkey(mint), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(destination), is_signer=False, is_writable=True),
        AccountMeta(to_pubkey(authority), is_signer=True, is_writable=False),
    ]
    return Instruction(TOKEN_PROGRAM_ID, data, metas)
