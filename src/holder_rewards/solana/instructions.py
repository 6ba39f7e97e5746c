"""Instruction and key helpers for SPL reward transfers."""

from __future__ import annotations

import json
from pathlib import Path

from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction
from spl.token.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from spl.token.instructions import TransferCheckedParams, transfer_checked

from holder_rewards.errors import ConfigurationError
from holder_rewards.models.config import DistributorConfig, TokenProgram

# CreateIdempotent: succeeds if the associated account already exists.
_CREATE_IDEMPOTENT = bytes([1])


def token_program_id(program: TokenProgram) -> Pubkey:
    if program is TokenProgram.TOKEN_2022:
        return TOKEN_2022_PROGRAM_ID
    return TOKEN_PROGRAM_ID


def associated_token_address(
    owner: Pubkey, mint: Pubkey, program_id: Pubkey = TOKEN_PROGRAM_ID
) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(program_id), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def create_associated_account_ix(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    """Idempotent associated-token-account creation, paid by ``payer``."""
    ata = associated_token_address(owner, mint, program_id)
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(ata, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(program_id, is_signer=False, is_writable=False),
    ]
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, _CREATE_IDEMPOTENT, accounts)


def reward_transfer_ix(
    source: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
    mint: Pubkey,
    amount: int,
    decimals: int,
    program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    return transfer_checked(
        TransferCheckedParams(
            program_id=program_id,
            source=source,
            mint=mint,
            dest=destination,
            owner=authority,
            amount=amount,
            decimals=decimals,
            signers=[],
        )
    )


def compute_price_ix(micro_lamports: int) -> Instruction:
    return set_compute_unit_price(micro_lamports)


def unsigned_size(instructions: list[Instruction], payer: Pubkey) -> int:
    """Serialized size of an unsigned legacy transaction holding ``instructions``.

    Signature slots are zero-filled, so this equals the signed wire size.
    """
    tx = Transaction.new_unsigned(Message(instructions, payer))
    return len(bytes(tx))


def sign_transaction(
    instructions: list[Instruction], signer: Keypair, blockhash: str
) -> bytes:
    recent = Hash.from_string(blockhash)
    msg = Message.new_with_blockhash(instructions, signer.pubkey(), recent)
    return bytes(Transaction([signer], msg, recent))


def transaction_signature(raw_transaction: bytes) -> str:
    """Fee-payer signature of a signed transaction, as the cluster will report it."""
    return str(Transaction.from_bytes(raw_transaction).signatures[0])


# ── Keys ───────────────────────────────────────────────────


def load_keypair(config: DistributorConfig) -> Keypair:
    """Load the fee-payer/distribution keypair from a base58 secret or a JSON key file."""
    if config.keypair_secret:
        try:
            return Keypair.from_base58_string(config.keypair_secret)
        except ValueError as exc:
            raise ConfigurationError(f"invalid keypair secret: {exc}") from None
    if config.keypair_path:
        path = Path(config.keypair_path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"keypair file not found: {path}")
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return Keypair.from_bytes(bytes(raw))
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"invalid keypair file {path}: {exc}") from None
    raise ConfigurationError("no signer configured (keypair_path or keypair_secret)")
