"""Transaction batches, submission attempts and cycle summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from holder_rewards.models.distribution import ConversionResult

if TYPE_CHECKING:
    from solders.instruction import Instruction


class AttemptOutcome(str, Enum):
    """States of the per-batch submission state machine."""

    PENDING = "pending"
    SENDING = "sending"
    CONFIRMED = "confirmed"
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"  # recent blockhash no longer valid
    TIMED_OUT = "timed_out"  # transient, retried with backoff
    FAILED = "failed"


class BatchStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"  # never sent because the cycle was cancelled


@dataclass(frozen=True)
class TransactionBatch:
    """A size-bounded group of instructions submitted as one transaction."""

    batch_id: int
    instructions: tuple[Instruction, ...]
    recipients: tuple[str, ...]
    amount: Decimal  # reward asset moved by this batch
    estimated_size_bytes: int
    account_creations: int = 0


@dataclass(frozen=True)
class SubmissionAttempt:
    """One send of a batch and what came of it."""

    batch_id: int
    attempt_number: int
    outcome: AttemptOutcome
    backoff_ms: int = 0  # delay scheduled after this attempt
    signature: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchOutcome:
    """Terminal result for a batch."""

    batch_id: int
    status: BatchStatus
    recipients: int
    amount: Decimal
    signature: str | None = None
    attempts: tuple[SubmissionAttempt, ...] = field(default_factory=tuple)
    error: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.status is BatchStatus.CONFIRMED


@dataclass(frozen=True)
class CycleSummary:
    """What one distribution cycle did. Returned even when some batches failed."""

    cycle_id: str
    started_at: str
    completed_at: str = ""
    holders_total: int = 0
    holders_qualified: int = 0
    skipped_below_min_holding: int = 0
    skipped_below_min_payout: int = 0
    fee_input: Decimal = Decimal(0)
    total_reward: Decimal = Decimal(0)
    remainder: Decimal = Decimal(0)
    conversion: ConversionResult | None = None
    outcomes: tuple[BatchOutcome, ...] = field(default_factory=tuple)
    aborted_reason: str | None = None
    duration_ms: int = 0

    @property
    def holders_disqualified(self) -> int:
        return self.holders_total - self.holders_qualified

    @property
    def batches_total(self) -> int:
        return len(self.outcomes)

    @property
    def batches_confirmed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is BatchStatus.CONFIRMED)

    @property
    def batches_failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is BatchStatus.FAILED)

    @property
    def batches_cancelled(self) -> int:
        return sum(1 for o in self.outcomes if o.status is BatchStatus.CANCELLED)

    @property
    def failed_batches(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if o.status is BatchStatus.FAILED]

    @property
    def signatures(self) -> list[str]:
        return [o.signature for o in self.outcomes if o.confirmed and o.signature]

    @property
    def distributed_amount(self) -> Decimal:
        return sum((o.amount for o in self.outcomes if o.confirmed), Decimal(0))

    @property
    def partial_failure(self) -> bool:
        return self.batches_failed > 0

    def raise_for_failures(self) -> None:
        """Raise PartialDistributionFailure if any batch failed."""
        if self.partial_failure:
            from holder_rewards.errors import PartialDistributionFailure

            raise PartialDistributionFailure(self)
