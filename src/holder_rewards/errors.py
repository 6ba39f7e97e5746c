"""Error taxonomy for the distribution cycle."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from holder_rewards.models.submission import CycleSummary


class DistributorError(Exception):
    """Base class for all holder_rewards errors."""


class TransientNetworkError(DistributorError):
    """Timeouts and other failures that are retried with backoff."""


class RateLimitedError(TransientNetworkError):
    """The RPC endpoint signalled rate limiting (HTTP 429)."""


class StateExpiredError(DistributorError):
    """The recent blockhash used to sign a transaction is no longer valid."""


class ConfigurationError(DistributorError):
    """Invalid or incomplete configuration. Fatal, raised before any submission."""


class BatchTooLargeError(ConfigurationError):
    """A single holder's creation + transfer pair exceeds the transaction size ceiling."""

    def __init__(self, recipient: str, size_bytes: int, max_size_bytes: int) -> None:
        super().__init__(
            f"instruction pair for {recipient} is {size_bytes} bytes, "
            f"ceiling is {max_size_bytes} bytes"
        )
        self.recipient = recipient
        self.size_bytes = size_bytes
        self.max_size_bytes = max_size_bytes


class LiquidityError(DistributorError):
    """The fee amount could not be converted into the reward asset."""


class InsufficientLiquidityError(LiquidityError):
    pass


class SlippageExceededError(LiquidityError):
    pass


class PoolUnavailableError(LiquidityError):
    pass


class SwapFailedError(LiquidityError):
    pass


class PartialDistributionFailure(DistributorError):
    """Some batches failed after exhausting retries. Confirmed batches are not rolled back."""

    def __init__(self, summary: CycleSummary) -> None:
        failed = ", ".join(f"#{o.batch_id}" for o in summary.failed_batches)
        super().__init__(
            f"{summary.batches_failed} of {summary.batches_total} batches failed ({failed})"
        )
        self.summary = summary

