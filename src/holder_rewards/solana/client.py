"""Solana ledger client - balances, accounts and transaction submission via solana-py."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import MemcmpOpts, TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID

from holder_rewards.clock import Clock, SystemClock
from holder_rewards.errors import (
    DistributorError,
    RateLimitedError,
    StateExpiredError,
    TransientNetworkError,
)
from holder_rewards.interfaces.ledger import AccountInfo, RecentReference
from holder_rewards.models.config import DistributorConfig
from holder_rewards.models.submission import AttemptOutcome

log = logging.getLogger(__name__)

# Size of a classic SPL token account
TOKEN_ACCOUNT_SIZE = 165

_EXPIRED_MARKERS = ("blockhash not found", "block height exceeded")


def _translate(exc: Exception) -> Exception:
    """Map solana-py/httpx failures onto the distributor error taxonomy."""
    cause = exc.__cause__ or exc
    text = f"{exc} {cause}".lower()
    if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 429:
        return RateLimitedError(str(cause))
    if "429" in text or "too many requests" in text:
        return RateLimitedError(str(exc))
    if any(marker in text for marker in _EXPIRED_MARKERS):
        return StateExpiredError(str(exc))
    if isinstance(cause, (httpx.TimeoutException, httpx.TransportError)):
        return TransientNetworkError(str(cause) or type(cause).__name__)
    return DistributorError(str(exc))


class SolanaLedgerClient:
    """LedgerClient over an async JSON-RPC connection."""

    def __init__(self, config: DistributorConfig, clock: Clock | None = None) -> None:
        self._commitment = Commitment(config.commitment)
        self._client = AsyncClient(
            config.rpc_url, commitment=self._commitment, timeout=config.rpc_timeout
        )
        self._poll_interval = config.confirm_poll_interval
        self._clock = clock or SystemClock()
        accepted = [TransactionConfirmationStatus.Finalized]
        if config.commitment != "finalized":
            accepted.append(TransactionConfirmationStatus.Confirmed)
        self._accepted = tuple(accepted)

    async def close(self) -> None:
        await self._client.close()

    # ── Reads ──────────────────────────────────────────────

    async def get_token_balance(self, token_account: str) -> Decimal:
        try:
            resp = await self._client.get_token_account_balance(
                Pubkey.from_string(token_account)
            )
        except RPCException as exc:
            if "could not find account" in str(exc).lower():
                return Decimal(0)
            raise _translate(exc) from exc
        except (SolanaRpcException, httpx.HTTPError) as exc:
            raise _translate(exc) from exc
        amount = resp.value
        return Decimal(amount.amount).scaleb(-amount.decimals)

    async def get_account_info(self, address: str) -> AccountInfo | None:
        try:
            resp = await self._client.get_account_info(Pubkey.from_string(address))
        except (RPCException, SolanaRpcException, httpx.HTTPError) as exc:
            raise _translate(exc) from exc
        if resp.value is None:
            return None
        return AccountInfo(
            owner=str(resp.value.owner),
            lamports=resp.value.lamports,
            data_len=len(resp.value.data),
        )

    async def get_token_accounts(self, mint: str, program_id: Pubkey) -> list[bytes]:
        """Raw data of every token account for ``mint`` under ``program_id``."""
        filters: list = [MemcmpOpts(offset=0, bytes=mint)]
        # Token-2022 accounts with extensions are larger than 165 bytes
        if program_id == TOKEN_PROGRAM_ID:
            filters.insert(0, TOKEN_ACCOUNT_SIZE)
        try:
            resp = await self._client.get_program_accounts(
                program_id, encoding="base64", filters=filters
            )
        except (RPCException, SolanaRpcException, httpx.HTTPError) as exc:
            raise _translate(exc) from exc
        return [bytes(keyed.account.data) for keyed in resp.value]

    async def get_recent_reference(self) -> RecentReference:
        try:
            resp = await self._client.get_latest_blockhash()
        except (RPCException, SolanaRpcException, httpx.HTTPError) as exc:
            raise _translate(exc) from exc
        return RecentReference(
            blockhash=str(resp.value.blockhash),
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    # ── Submission ─────────────────────────────────────────

    async def submit(self, raw_transaction: bytes) -> str:
        opts = TxOpts(skip_confirmation=True, preflight_commitment=self._commitment)
        try:
            resp = await self._client.send_raw_transaction(raw_transaction, opts=opts)
        except (RPCException, SolanaRpcException, httpx.HTTPError) as exc:
            raise _translate(exc) from exc
        signature = str(resp.value)
        log.debug("Submitted %s", signature[:16])
        return signature

    async def confirm(
        self, signature: str, reference: RecentReference, timeout: float
    ) -> AttemptOutcome:
        """Poll signature status until confirmed, failed, expired or ``timeout``."""
        deadline = self._clock.monotonic() + timeout
        while True:
            outcome = await self.get_signature_outcome(signature)
            if outcome in (AttemptOutcome.CONFIRMED, AttemptOutcome.FAILED):
                return outcome

            try:
                height = (await self._client.get_block_height()).value
            except (RPCException, SolanaRpcException, httpx.HTTPError) as exc:
                raise _translate(exc) from exc
            if height > reference.last_valid_block_height:
                log.debug(
                    "Signature %s expired at height %d (valid until %d)",
                    signature[:16], height, reference.last_valid_block_height,
                )
                return AttemptOutcome.EXPIRED

            if self._clock.monotonic() >= deadline:
                raise asyncio.TimeoutError(
                    f"confirmation of {signature[:16]} timed out after {timeout}s"
                )
            await self._clock.sleep(self._poll_interval)

    async def get_signature_outcome(self, signature: str) -> AttemptOutcome | None:
        try:
            resp = await self._client.get_signature_statuses(
                [Signature.from_string(signature)]
            )
        except (RPCException, SolanaRpcException, httpx.HTTPError) as exc:
            raise _translate(exc) from exc
        status = resp.value[0]
        if status is None:
            return None
        if status.err is not None:
            return AttemptOutcome.FAILED
        if status.confirmation_status in self._accepted:
            return AttemptOutcome.CONFIRMED
        return AttemptOutcome.PENDING
