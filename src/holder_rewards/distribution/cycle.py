"""Distribution cycle - wires the pipeline together for one reward run."""

from __future__ import annotations

import asyncio
import logging
import signal
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from holder_rewards.clock import Clock, SystemClock
from holder_rewards.distribution.builder import BatchBuilder
from holder_rewards.distribution.converter import AssetConverter
from holder_rewards.distribution.planner import DistributionPlanner
from holder_rewards.distribution.submission import SubmissionEngine
from holder_rewards.events.sinks import FanOutSink, LoggingEventSink, StoreEventSink
from holder_rewards.interfaces.ledger import LedgerClient
from holder_rewards.interfaces.pool import PoolBackend
from holder_rewards.interfaces.sink import Event, EventSink
from holder_rewards.interfaces.store import StateStore
from holder_rewards.models.config import DistributorConfig
from holder_rewards.models.distribution import (
    ConversionResult,
    DistributionPlan,
    PoolSnapshot,
    QuoteResult,
)
from holder_rewards.models.events import CycleEvent
from holder_rewards.models.holders import EligibilityResult
from holder_rewards.models.submission import BatchOutcome, CycleSummary, TransactionBatch
from holder_rewards.policy.eligibility import EligibilityFilter
from holder_rewards.pool.raydium import RaydiumPoolBackend
from holder_rewards.solana.client import SolanaLedgerClient
from holder_rewards.solana.holders import TokenHolderEnumerator
from holder_rewards.solana.instructions import (
    associated_token_address,
    load_keypair,
    token_program_id,
)
from holder_rewards.units import truncate

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DistributionCycle:
    """One reward distribution run.

    1. Size the conversion from the fee balance (reward_share_pct of it)
    2. Snapshot holders and pre-flight the pool, concurrently
    3. Apply eligibility; stop early if nobody qualifies
    4. Swap fees into the reward asset (fatal on liquidity errors)
    5. Plan payouts from the realized output, build batches, submit in order
    6. Persist outcomes and the remainder, return a CycleSummary

    Configuration and liquidity errors abort before any submission and are
    re-raised after the aborted cycle is recorded. Batch failures never
    raise; they are reported in the summary.
    """

    def __init__(
        self,
        config: DistributorConfig,
        ledger: LedgerClient,
        pool: PoolBackend,
        signer: Keypair,
        store: StateStore | None = None,
        sink: EventSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._cfg = config
        self._ledger = ledger
        self._signer = signer
        self._store = store
        self._sink = sink
        self._clock = clock or SystemClock()

        self.enumerator = TokenHolderEnumerator(ledger, config)
        self.eligibility = EligibilityFilter(config.minimum_holding_threshold)
        self.converter = AssetConverter(pool, config, self._clock)
        self.planner = DistributionPlanner(
            config.reward_decimals, config.minimum_payout_threshold
        )
        self.builder = BatchBuilder(ledger, config, signer.pubkey())

    @property
    def fee_account(self) -> Pubkey:
        """The signer's account of the distributed token, where collected fees land."""
        return associated_token_address(
            self._signer.pubkey(),
            Pubkey.from_string(self._cfg.token_mint),
            token_program_id(self._cfg.token_program),
        )

    async def conversion_amount(self) -> tuple[Decimal, Decimal]:
        """(fee balance, amount to convert) - the configured share of the balance."""
        balance = await asyncio.wait_for(
            self._ledger.get_token_balance(str(self.fee_account)), self._cfg.rpc_timeout
        )
        amount = truncate(
            balance * self._cfg.reward_share_pct / Decimal(100), self._cfg.token_decimals
        )
        return balance, amount

    # ── Dry run ────────────────────────────────────────────

    async def preview(
        self, reward_amount: Decimal
    ) -> tuple[EligibilityResult, DistributionPlan, list[TransactionBatch]]:
        """Snapshot, eligibility, plan and batches for ``reward_amount``. Sends nothing."""
        holders = await self.enumerator.snapshot()
        eligibility = self.eligibility.apply(holders)
        plan = self.planner.plan(eligibility, reward_amount)
        batches = await self.builder.build(plan)
        return eligibility, plan, batches

    # ── Full run ───────────────────────────────────────────

    async def run(self, cancel_event: asyncio.Event | None = None) -> CycleSummary:
        cycle_id = uuid.uuid4().hex
        started = _now()
        start_time = self._clock.monotonic()
        await self._emit(CycleEvent(phase="start", cycle_id=cycle_id))
        log.info("Cycle %s started", cycle_id[:8])

        summary = CycleSummary(cycle_id=cycle_id, started_at=started)
        try:
            summary = await self._run(summary, cancel_event)
        except Exception as exc:
            summary = replace(summary, aborted_reason=f"{type(exc).__name__}: {exc}")
            log.error("Cycle %s aborted: %s", cycle_id[:8], summary.aborted_reason)
            await self._finish(summary, start_time)
            raise

        return await self._finish(summary, start_time)

    async def _run(
        self, summary: CycleSummary, cancel_event: asyncio.Event | None
    ) -> CycleSummary:
        fee_balance, amount = await self.conversion_amount()
        summary = replace(summary, fee_input=amount)
        log.info(
            "Fee balance %s, converting %s%% = %s",
            fee_balance, self._cfg.reward_share_pct, amount,
        )

        if amount > 0:
            holders, (pool, quote) = await asyncio.gather(
                self.enumerator.snapshot(), self._preflight(amount)
            )
        else:
            holders, pool, quote = await self.enumerator.snapshot(), None, None

        eligibility = self.eligibility.apply(holders)
        summary = replace(
            summary,
            holders_total=eligibility.total_holders,
            holders_qualified=len(eligibility.qualified),
            skipped_below_min_holding=eligibility.disqualified_count,
        )
        if not eligibility.qualified or pool is None or quote is None:
            log.info(
                "Nothing to distribute (%d qualified holders, conversion amount %s)",
                len(eligibility.qualified), amount,
            )
            return summary

        self.builder.ensure_pair_fits()
        if cancel_event is not None and cancel_event.is_set():
            return replace(summary, aborted_reason="cancelled before conversion")

        conversion = await self._convert(amount, pool, quote)
        carried = await self._carried_remainder()
        total = conversion.output_amount + carried
        if carried:
            log.info("Adding carried remainder %s to %s", carried, conversion.output_amount)

        plan = self.planner.plan(eligibility, total)
        batches = await self.builder.build(plan)

        engine = SubmissionEngine(
            self._ledger, self._signer, self._cfg,
            clock=self._clock, sink=self._sink, cycle_id=summary.cycle_id,
        )
        outcomes = await engine.submit_all(batches, cancel_event)
        await self._save_outcomes(summary.cycle_id, outcomes)

        if self._cfg.carry_forward_remainder and self._store is not None:
            await self._store.set_carried_remainder(plan.remainder)

        return replace(
            summary,
            skipped_below_min_payout=plan.skipped_below_min_payout,
            total_reward=total,
            remainder=plan.remainder,
            conversion=conversion,
            outcomes=tuple(outcomes),
        )

    async def _preflight(self, amount: Decimal) -> tuple[PoolSnapshot, QuoteResult]:
        pool = await self.converter.check_liquidity(amount)
        quote = await self.converter.quote(amount, pool)
        log.info(
            "Quote: %s -> %s (price %s)",
            amount, quote.estimated_output, quote.effective_price,
        )
        return pool, quote

    async def _convert(
        self, amount: Decimal, pool: PoolSnapshot, quote: QuoteResult
    ) -> ConversionResult:
        min_out = self.converter.min_acceptable_output(quote.estimated_output)
        result = await self.converter.swap(amount, min_out, self._signer, pool)
        if result.quoted_output is None:
            result = replace(result, quoted_output=quote.estimated_output)
        return result

    async def _carried_remainder(self) -> Decimal:
        if not self._cfg.carry_forward_remainder or self._store is None:
            return Decimal(0)
        return await self._store.get_carried_remainder()

    async def _save_outcomes(self, cycle_id: str, outcomes: list[BatchOutcome]) -> None:
        if self._store is None:
            return
        for outcome in outcomes:
            await self._store.save_batch_outcome(cycle_id, outcome)

    async def _finish(self, summary: CycleSummary, start_time: float) -> CycleSummary:
        duration = int((self._clock.monotonic() - start_time) * 1000)
        summary = replace(summary, completed_at=_now(), duration_ms=duration)
        if self._store is not None:
            try:
                await self._store.save_cycle_summary(summary)
            except Exception as exc:
                log.error("Failed to persist cycle %s: %s", summary.cycle_id[:8], exc)
        await self._emit(
            CycleEvent(
                phase="end",
                cycle_id=summary.cycle_id,
                holders_total=summary.holders_total,
                holders_qualified=summary.holders_qualified,
                total_reward=summary.total_reward,
                batches_total=summary.batches_total,
                batches_confirmed=summary.batches_confirmed,
                batches_failed=summary.batches_failed,
                skipped_below_min_holding=summary.skipped_below_min_holding,
                skipped_below_min_payout=summary.skipped_below_min_payout,
                error=summary.aborted_reason,
            )
        )
        log.info(
            "Cycle %s done: %d/%d batches confirmed, %d failed, %s distributed in %dms",
            summary.cycle_id[:8], summary.batches_confirmed, summary.batches_total,
            summary.batches_failed, summary.distributed_amount, duration,
        )
        return summary

    async def _emit(self, event: Event) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.emit(event)
        except Exception as exc:
            log.warning("Event sink failed: %s", exc)


async def run_cycle(config: DistributorConfig, store: StateStore) -> CycleSummary:
    """Entry point for one live cycle: Solana ledger, Raydium pool, SIGINT cancels."""
    config.validate(require_signer=True)
    signer = load_keypair(config)
    ledger = SolanaLedgerClient(config)
    sink = FanOutSink([LoggingEventSink(), StoreEventSink(store)])
    cycle = DistributionCycle(
        config, ledger, RaydiumPoolBackend(ledger, config), signer, store=store, sink=sink,
    )

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        log.warning("Cancellation requested; finishing the in-flight batch")
        cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        return await cycle.run(cancel)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass
        await ledger.close()
