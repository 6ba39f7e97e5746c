"""Data models for holder_rewards."""

from holder_rewards.models.config import DistributorConfig, TokenProgram
from holder_rewards.models.distribution import (
    ConversionResult,
    DistributionPlan,
    PlanEntry,
    PoolSnapshot,
    QuoteResult,
)
from holder_rewards.models.events import AttemptEvent, CycleEvent
from holder_rewards.models.holders import EligibilityResult, Holder
from holder_rewards.models.records import AttemptRecord, CycleRecord
from holder_rewards.models.submission import (
    AttemptOutcome,
    BatchOutcome,
    BatchStatus,
    CycleSummary,
    SubmissionAttempt,
    TransactionBatch,
)

__all__ = [
    "DistributorConfig", "TokenProgram",
    "ConversionResult", "DistributionPlan", "PlanEntry", "PoolSnapshot", "QuoteResult",
    "AttemptEvent", "CycleEvent",
    "EligibilityResult", "Holder",
    "AttemptRecord", "CycleRecord",
    "AttemptOutcome", "BatchOutcome", "BatchStatus", "CycleSummary",
    "SubmissionAttempt", "TransactionBatch",
]
