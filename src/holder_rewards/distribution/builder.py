"""Batch builder - packs a distribution plan into size-bounded transactions."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Callable, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from holder_rewards.errors import BatchTooLargeError, ConfigurationError
from holder_rewards.interfaces.ledger import LedgerClient
from holder_rewards.models.config import DistributorConfig
from holder_rewards.models.distribution import DistributionPlan, PlanEntry
from holder_rewards.models.holders import Holder
from holder_rewards.models.submission import TransactionBatch
from holder_rewards.solana.instructions import (
    associated_token_address,
    compute_price_ix,
    create_associated_account_ix,
    reward_transfer_ix,
    token_program_id,
    unsigned_size,
)
from holder_rewards.units import to_base_units

log = logging.getLogger(__name__)

SizeEstimator = Callable[[Sequence[Instruction]], int]


class BatchBuilder:
    """Translates a DistributionPlan into TransactionBatches.

    For every entry the recipient's reward account is looked up; missing
    accounts get an idempotent creation instruction ahead of the transfer.
    The (creation, transfer) pair is atomic and never split across batches.
    Batches are filled greedily up to ``max_transaction_size_bytes``.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        config: DistributorConfig,
        payer: Pubkey,
        size_estimator: SizeEstimator | None = None,
    ) -> None:
        self._ledger = ledger
        self._payer = payer
        self._mint = Pubkey.from_string(config.reward_mint)
        self._decimals = config.reward_decimals
        self._program = token_program_id(config.reward_token_program)
        self._max_size = config.max_transaction_size_bytes
        self._concurrency = config.concurrency_limit
        self._lookup_timeout = config.rpc_timeout
        self._prefix: list[Instruction] = []
        if config.compute_unit_price_micro_lamports > 0:
            self._prefix.append(compute_price_ix(config.compute_unit_price_micro_lamports))
        self._estimate = size_estimator or (
            lambda ixs: unsigned_size(list(ixs), self._payer)
        )

    @property
    def source_account(self) -> Pubkey:
        """The payer's reward-asset account every transfer is drawn from."""
        return associated_token_address(self._payer, self._mint, self._program)

    def ensure_pair_fits(self) -> int:
        """Size of a worst-case (creation + transfer) batch. Raises BatchTooLargeError.

        Every holder pair has the same shape, so the check runs once, before the swap.
        """
        owner = Pubkey.new_unique()
        account = associated_token_address(owner, self._mint, self._program)
        sample = PlanEntry(Holder(str(owner), Decimal(1)), Decimal(1), Decimal(1))
        pair = self._instruction_pair(sample, owner, account, False)
        size = self._estimate(self._prefix + pair)
        if size > self._max_size:
            raise BatchTooLargeError("any holder", size, self._max_size)
        return size

    async def build(self, plan: DistributionPlan) -> list[TransactionBatch]:
        if plan.is_empty:
            return []

        owners = [self._owner(entry) for entry in plan.entries]
        accounts = [associated_token_address(o, self._mint, self._program) for o in owners]
        exists = await self._lookup_accounts(accounts)

        batches: list[TransactionBatch] = []
        current: list[Instruction] = []
        recipients: list[str] = []
        amounts: list[Decimal] = []
        creations = 0

        def close_batch() -> None:
            nonlocal current, recipients, amounts, creations
            instructions = self._prefix + current
            batches.append(
                TransactionBatch(
                    batch_id=len(batches) + 1,
                    instructions=tuple(instructions),
                    recipients=tuple(recipients),
                    amount=sum(amounts, Decimal(0)),
                    estimated_size_bytes=self._estimate(instructions),
                    account_creations=creations,
                )
            )
            current, recipients, amounts, creations = [], [], [], 0

        for entry, owner, account, present in zip(plan.entries, owners, accounts, exists):
            unit = self._instruction_pair(entry, owner, account, present)
            if self._estimate(self._prefix + current + unit) > self._max_size:
                if current:
                    close_batch()
                alone = self._estimate(self._prefix + unit)
                if alone > self._max_size:
                    raise BatchTooLargeError(entry.holder.address, alone, self._max_size)
            current.extend(unit)
            recipients.append(entry.holder.address)
            amounts.append(entry.payable_amount)
            creations += 0 if present else 1

        if current:
            close_batch()

        log.info(
            "Built %d batches for %d recipients (%d account creations)",
            len(batches),
            len(plan.entries),
            sum(b.account_creations for b in batches),
        )
        return batches

    # ── Internals ──────────────────────────────────────────

    def _owner(self, entry: PlanEntry) -> Pubkey:
        try:
            return Pubkey.from_string(entry.holder.address)
        except ValueError as exc:
            raise ConfigurationError(
                f"invalid holder address {entry.holder.address!r}: {exc}"
            ) from None

    def _instruction_pair(
        self, entry: PlanEntry, owner: Pubkey, account: Pubkey, present: bool
    ) -> list[Instruction]:
        unit: list[Instruction] = []
        if not present:
            unit.append(
                create_associated_account_ix(self._payer, owner, self._mint, self._program)
            )
        unit.append(
            reward_transfer_ix(
                source=self.source_account,
                destination=account,
                authority=self._payer,
                mint=self._mint,
                amount=to_base_units(entry.payable_amount, self._decimals),
                decimals=self._decimals,
                program_id=self._program,
            )
        )
        return unit

    async def _lookup_accounts(self, accounts: list[Pubkey]) -> list[bool]:
        """Existence of each recipient account, with bounded fan-out.

        A failed lookup is logged and treated as missing (creation is idempotent).
        """
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _check_one(account: Pubkey) -> bool:
            async with semaphore:
                info = await asyncio.wait_for(
                    self._ledger.get_account_info(str(account)), self._lookup_timeout
                )
                return info is not None

        results = await asyncio.gather(
            *(_check_one(a) for a in accounts), return_exceptions=True
        )
        exists: list[bool] = []
        for account, result in zip(accounts, results):
            if isinstance(result, BaseException):
                log.warning(
                    "Account lookup failed for %s (%s), including creation",
                    str(account)[:8], result,
                )
                exists.append(False)
            else:
                exists.append(result)
        return exists
