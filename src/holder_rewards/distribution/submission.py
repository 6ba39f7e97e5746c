"""Submission engine - sends batches sequentially through the retry state machine."""

from __future__ import annotations

import asyncio
import logging

import httpx
from solders.keypair import Keypair

from holder_rewards.clock import Clock, SystemClock, backoff_ms
from holder_rewards.errors import (
    RateLimitedError,
    StateExpiredError,
    TransientNetworkError,
)
from holder_rewards.interfaces.ledger import LedgerClient, RecentReference
from holder_rewards.interfaces.sink import EventSink
from holder_rewards.models.config import DistributorConfig
from holder_rewards.models.events import AttemptEvent
from holder_rewards.models.submission import (
    AttemptOutcome,
    BatchOutcome,
    BatchStatus,
    SubmissionAttempt,
    TransactionBatch,
)
from holder_rewards.solana.instructions import sign_transaction, transaction_signature

log = logging.getLogger(__name__)

# Known RPC error substrings
_RATE_LIMIT_MARKERS = ("429", "too many requests", "rate limit")
_EXPIRED_MARKERS = (
    "blockhash not found",
    "blockhashnotfound",
    "block height exceeded",
    "transaction has expired",
)


def classify_exception(exc: BaseException) -> AttemptOutcome:
    """Map a transport/RPC exception onto a submission outcome."""
    if isinstance(exc, RateLimitedError):
        return AttemptOutcome.RATE_LIMITED
    if isinstance(exc, StateExpiredError):
        return AttemptOutcome.EXPIRED
    if isinstance(exc, (asyncio.TimeoutError, TransientNetworkError)):
        return AttemptOutcome.TIMED_OUT
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return AttemptOutcome.RATE_LIMITED
    if isinstance(exc, httpx.TransportError):
        return AttemptOutcome.TIMED_OUT

    msg = str(exc).lower()
    if any(marker in msg for marker in _RATE_LIMIT_MARKERS):
        return AttemptOutcome.RATE_LIMITED
    if any(marker in msg for marker in _EXPIRED_MARKERS):
        return AttemptOutcome.EXPIRED
    return AttemptOutcome.FAILED


class SubmissionEngine:
    """Submits TransactionBatches one at a time until each is terminal.

    Per-batch state machine:
        PENDING -> SENDING -> CONFIRMED | RATE_LIMITED | EXPIRED | TIMED_OUT | FAILED

    - RATE_LIMITED, TIMED_OUT, FAILED: backoff min(initial * 2^i, max), then
      retry. Each one spends the retry budget.
    - EXPIRED: retried at once with a fresh blockhash, without spending the
      budget, up to ``max_expiry_retries`` times.
    - Budget exhausted: the batch is FAILED and reported, never raised.

    A transaction is re-signed under a new blockhash only once the previous
    one is settled: confirmed, failed on-chain, or past its last valid block
    height. While it is unsettled (a confirm poll was rate limited or timed
    out) the retry keeps waiting on that same signature. Before every
    attempt, signatures already sent for the batch are checked, so a
    transaction that landed late is not paid twice.

    One engine serves one cycle. Confirmed batches are remembered by id and
    never re-sent.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        signer: Keypair,
        config: DistributorConfig,
        clock: Clock | None = None,
        sink: EventSink | None = None,
        cycle_id: str = "",
    ) -> None:
        self._ledger = ledger
        self._signer = signer
        self._clock = clock or SystemClock()
        self._sink = sink
        self._cycle_id = cycle_id
        self._max_retries = config.max_retries
        self._max_expiry_retries = config.max_expiry_retries
        self._initial_backoff_ms = config.initial_backoff_ms
        self._max_backoff_ms = config.max_backoff_ms
        self._spacing_ms = config.inter_batch_spacing_ms
        self._rpc_timeout = config.rpc_timeout
        self._confirm_timeout = config.confirm_timeout
        self._confirmed: dict[int, BatchOutcome] = {}
        self._submit_lock = asyncio.Lock()

    @property
    def confirmed_batches(self) -> dict[int, BatchOutcome]:
        return dict(self._confirmed)

    async def submit_all(
        self,
        batches: list[TransactionBatch],
        cancel_event: asyncio.Event | None = None,
    ) -> list[BatchOutcome]:
        """Submit batches strictly in order. Returns one outcome per batch.

        A set ``cancel_event`` stops the run before the next batch starts;
        the batch in flight is always driven to a terminal state first.
        """
        outcomes: list[BatchOutcome] = []
        for index, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                log.warning(
                    "Cancelled: %d of %d batches not sent",
                    len(batches) - index, len(batches),
                )
                outcomes.extend(
                    BatchOutcome(
                        batch_id=b.batch_id,
                        status=BatchStatus.CANCELLED,
                        recipients=len(b.recipients),
                        amount=b.amount,
                        error="cancelled",
                    )
                    for b in batches[index:]
                )
                break

            already = batch.batch_id in self._confirmed
            outcome = await self.submit_batch(batch)
            outcomes.append(outcome)

            more = index + 1 < len(batches)
            if outcome.confirmed and not already and more and self._spacing_ms > 0:
                await self._clock.sleep(self._spacing_ms / 1000)

        return outcomes

    async def submit_batch(self, batch: TransactionBatch) -> BatchOutcome:
        """Drive one batch to CONFIRMED or FAILED. A confirmed batch is a no-op."""
        if batch.batch_id in self._confirmed:
            log.debug("Batch #%d already confirmed, not re-sending", batch.batch_id)
            return self._confirmed[batch.batch_id]

        async with self._submit_lock:
            outcome = await self._drive(batch)

        if outcome.confirmed:
            self._confirmed[batch.batch_id] = outcome
            log.info(
                "Batch #%d confirmed: %d recipients, %s (tx %s)",
                batch.batch_id,
                outcome.recipients,
                outcome.amount,
                outcome.signature[:16] if outcome.signature else "?",
            )
        else:
            log.error(
                "Batch #%d failed after %d attempts: %s",
                batch.batch_id, len(outcome.attempts), outcome.error,
            )
        return outcome

    # ── State machine ──────────────────────────────────────

    async def _drive(self, batch: TransactionBatch) -> BatchOutcome:
        attempts: list[SubmissionAttempt] = []
        sent: list[tuple[str, RecentReference]] = []
        unresolved = False  # sent[-1] may still land
        budget_used = 0
        backoff_index = 0
        expiry_retries = 0
        last_error: str | None = None

        while True:
            attempt_number = len(attempts) + 1
            signature: str | None = None
            error: str | None = None

            landed: str | None = None
            check_failed = False
            if sent:
                try:
                    landed = await self._find_landed(sent)
                except Exception as exc:
                    outcome = classify_exception(exc)
                    error = f"status check failed: {exc}"
                    check_failed = True

            if landed:
                outcome, signature = AttemptOutcome.CONFIRMED, landed
                unresolved = False
                log.info(
                    "Batch #%d: earlier signature %s landed, not resubmitting",
                    batch.batch_id, landed[:16],
                )
            elif not check_failed:
                sent_before = len(sent)
                try:
                    if unresolved:
                        signature, reference = sent[-1]
                        log.info(
                            "Batch #%d attempt %d: %s may still land, waiting on it",
                            batch.batch_id, attempt_number, signature[:16],
                        )
                    else:
                        log.debug(
                            "Batch #%d attempt %d: sending", batch.batch_id, attempt_number
                        )
                        signature, reference = await self._send(batch, sent)
                    outcome = await asyncio.wait_for(
                        self._ledger.confirm(signature, reference, self._confirm_timeout),
                        self._confirm_timeout + self._rpc_timeout,
                    )
                    if outcome is AttemptOutcome.FAILED:
                        error = "transaction failed on-chain"
                except Exception as exc:
                    outcome = classify_exception(exc)
                    error = f"{type(exc).__name__}: {exc}"
                # Only CONFIRMED, FAILED and EXPIRED settle a sent transaction.
                unresolved = (unresolved or len(sent) > sent_before) and outcome not in (
                    AttemptOutcome.CONFIRMED,
                    AttemptOutcome.FAILED,
                    AttemptOutcome.EXPIRED,
                )

            if outcome is AttemptOutcome.CONFIRMED:
                attempts.append(
                    SubmissionAttempt(batch.batch_id, attempt_number, outcome, 0, signature)
                )
                await self._emit_attempt(attempts[-1])
                return BatchOutcome(
                    batch_id=batch.batch_id,
                    status=BatchStatus.CONFIRMED,
                    recipients=len(batch.recipients),
                    amount=batch.amount,
                    signature=signature,
                    attempts=tuple(attempts),
                )

            last_error = error or outcome.value

            if (
                outcome is AttemptOutcome.EXPIRED
                and expiry_retries < self._max_expiry_retries
            ):
                expiry_retries += 1
                attempts.append(
                    SubmissionAttempt(
                        batch.batch_id, attempt_number, outcome, 0, signature, last_error
                    )
                )
                await self._emit_attempt(attempts[-1])
                log.warning(
                    "Batch #%d: blockhash expired, refreshing (%d/%d)",
                    batch.batch_id, expiry_retries, self._max_expiry_retries,
                )
                continue

            budget_used += 1
            if budget_used >= self._max_retries:
                if unresolved:
                    last_error = f"{last_error}; transaction {sent[-1][0]} unresolved"
                attempts.append(
                    SubmissionAttempt(
                        batch.batch_id, attempt_number, outcome, 0, signature, last_error
                    )
                )
                await self._emit_attempt(attempts[-1])
                return BatchOutcome(
                    batch_id=batch.batch_id,
                    status=BatchStatus.FAILED,
                    recipients=len(batch.recipients),
                    amount=batch.amount,
                    attempts=tuple(attempts),
                    error=last_error,
                )

            delay = backoff_ms(backoff_index, self._initial_backoff_ms, self._max_backoff_ms)
            backoff_index += 1
            attempts.append(
                SubmissionAttempt(
                    batch.batch_id, attempt_number, outcome, delay, signature, last_error
                )
            )
            await self._emit_attempt(attempts[-1])
            log.warning(
                "Batch #%d attempt %d %s, retrying in %dms (%d/%d)",
                batch.batch_id, attempt_number, outcome.value, delay,
                budget_used, self._max_retries,
            )
            await self._clock.sleep(delay / 1000)

    async def _send(
        self, batch: TransactionBatch, sent: list[tuple[str, RecentReference]]
    ) -> tuple[str, RecentReference]:
        """Sign under a fresh blockhash and submit. Records the send in ``sent``.

        A submit that times out is recorded under the locally derived
        signature, since the cluster may have accepted it.
        """
        reference = await asyncio.wait_for(
            self._ledger.get_recent_reference(), self._rpc_timeout
        )
        raw = sign_transaction(list(batch.instructions), self._signer, reference.blockhash)
        try:
            signature = await asyncio.wait_for(self._ledger.submit(raw), self._rpc_timeout)
        except Exception as exc:
            if classify_exception(exc) is AttemptOutcome.TIMED_OUT:
                sent.append((transaction_signature(raw), reference))
            raise
        sent.append((signature, reference))
        return signature, reference

    async def _find_landed(self, sent: list[tuple[str, RecentReference]]) -> str | None:
        """Signature of an earlier send that confirmed, if any."""
        for signature, _ in sent:
            status = await asyncio.wait_for(
                self._ledger.get_signature_outcome(signature), self._rpc_timeout
            )
            if status is AttemptOutcome.CONFIRMED:
                return signature
        return None

    async def _emit_attempt(self, attempt: SubmissionAttempt) -> None:
        if self._sink is None:
            return
        event = AttemptEvent(
            cycle_id=self._cycle_id,
            batch_id=attempt.batch_id,
            attempt=attempt.attempt_number,
            outcome=attempt.outcome.value,
            backoff_ms=attempt.backoff_ms,
            signature=attempt.signature,
            error=attempt.error,
        )
        try:
            await self._sink.emit(event)
        except Exception as exc:
            log.warning("Event sink failed for batch #%d: %s", attempt.batch_id, exc)
