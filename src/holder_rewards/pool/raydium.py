"""Raydium pool backend - pool info, quotes and swaps via the Raydium HTTP API."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Any

import httpx
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from holder_rewards.errors import (
    PoolUnavailableError,
    RateLimitedError,
    SlippageExceededError,
    SwapFailedError,
    TransientNetworkError,
)
from holder_rewards.interfaces.ledger import LedgerClient
from holder_rewards.models.config import DistributorConfig
from holder_rewards.models.distribution import ConversionResult, PoolSnapshot
from holder_rewards.models.submission import AttemptOutcome
from holder_rewards.solana.instructions import (
    associated_token_address,
    create_associated_account_ix,
    sign_transaction,
    token_program_id,
)
from holder_rewards.units import from_base_units, to_base_units

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api-v3.raydium.io"
DEFAULT_SWAP_URL = "https://transaction-v1.raydium.io"
TX_VERSION = "LEGACY"


class RaydiumPoolBackend:
    """PoolBackend over the public Raydium v3 API.

    - load_pool:  GET {api}/pools/info/ids
    - quote:      GET {swap}/compute/swap-base-in
    - swap:       POST {swap}/transaction/swap-base-in, then sign and submit
                  the returned transactions through the ledger client

    The realized output is the reward account's balance delta, never the quote.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        config: DistributorConfig,
        api_url: str = DEFAULT_API_URL,
        swap_url: str = DEFAULT_SWAP_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._ledger = ledger
        self._token_mint = config.token_mint
        self._reward_mint = config.reward_mint
        self._token_program = token_program_id(config.token_program)
        self._reward_program = token_program_id(config.reward_token_program)
        self._slippage_bps = config.slippage_tolerance_bps
        self._timeout = config.rpc_timeout
        self._confirm_timeout = config.confirm_timeout
        self._priority_fee = config.compute_unit_price_micro_lamports
        self._api_url = api_url.rstrip("/")
        self._swap_url = swap_url.rstrip("/")
        self._transport = transport

    # ── PoolBackend ────────────────────────────────────────

    async def load_pool(self, pool_id: str) -> PoolSnapshot:
        body = await self._request(
            "GET", f"{self._api_url}/pools/info/ids", params={"ids": pool_id}
        )
        data = body.get("data") or []
        info = data[0] if data else None
        if not info:
            raise PoolUnavailableError(f"pool {pool_id[:8]} not found")

        mint_a, mint_b = info["mintA"], info["mintB"]
        if mint_a["address"] == self._token_mint and mint_b["address"] == self._reward_mint:
            source, reward = ("A", mint_a), ("B", mint_b)
        elif mint_b["address"] == self._token_mint and mint_a["address"] == self._reward_mint:
            source, reward = ("B", mint_b), ("A", mint_a)
        else:
            raise PoolUnavailableError(
                f"pool {pool_id[:8]} does not pair {self._token_mint[:8]} with {self._reward_mint[:8]}"
            )

        return PoolSnapshot(
            pool_id=pool_id,
            source_mint=source[1]["address"],
            reward_mint=reward[1]["address"],
            source_reserve=Decimal(str(info[f"mintAmount{source[0]}"])),
            reward_reserve=Decimal(str(info[f"mintAmount{reward[0]}"])),
            source_decimals=int(source[1]["decimals"]),
            reward_decimals=int(reward[1]["decimals"]),
            fee_rate=Decimal(str(info.get("feeRate", 0))),
            loaded_at=datetime.now(timezone.utc).isoformat(),
        )

    async def quote(self, pool: PoolSnapshot, amount_in: Decimal) -> Decimal:
        computed = await self._compute(pool, amount_in, self._slippage_bps)
        return from_base_units(int(computed["data"]["outputAmount"]), pool.reward_decimals)

    async def swap(
        self,
        pool: PoolSnapshot,
        amount_in: Decimal,
        min_out: Decimal,
        signer: Keypair,
    ) -> ConversionResult:
        owner = signer.pubkey()
        input_account = associated_token_address(
            owner, Pubkey.from_string(pool.source_mint), self._token_program
        )
        output_account = associated_token_address(
            owner, Pubkey.from_string(pool.reward_mint), self._reward_program
        )
        await self._ensure_account(signer, output_account, pool.reward_mint)

        # Fresh quote; refuse before spending anything if it already misses min_out
        fresh = await self.quote(pool, amount_in)
        if fresh < min_out:
            raise SlippageExceededError(f"fresh quote {fresh} already below minimum {min_out}")
        bps = _slippage_bps_for(fresh, min_out)
        computed = await self._compute(pool, amount_in, bps)

        before = await self._ledger.get_token_balance(str(output_account))
        body = await self._request(
            "POST",
            f"{self._swap_url}/transaction/swap-base-in",
            json={
                "computeUnitPriceMicroLamports": str(self._priority_fee),
                "swapResponse": computed,
                "txVersion": TX_VERSION,
                "wallet": str(owner),
                "wrapSol": False,
                "unwrapSol": False,
                "inputAccount": str(input_account),
                "outputAccount": str(output_account),
            },
        )
        encoded = [item["transaction"] for item in body.get("data") or []]
        if not encoded:
            raise SwapFailedError("swap API returned no transactions")

        signature = None
        for raw in encoded:
            signature = await self._sign_and_send(base64.b64decode(raw), signer)

        after = await self._ledger.get_token_balance(str(output_account))
        received = after - before
        price = received / amount_in if amount_in > 0 else Decimal(0)
        log.info("Raydium swap %s -> %s (quoted %s)", amount_in, received, fresh)
        return ConversionResult(
            input_amount=amount_in,
            output_amount=received,
            effective_price=price,
            quoted_output=fresh,
            signature=signature,
        )

    # ── Internals ──────────────────────────────────────────

    async def _compute(self, pool: PoolSnapshot, amount_in: Decimal, bps: int) -> dict:
        body = await self._request(
            "GET",
            f"{self._swap_url}/compute/swap-base-in",
            params={
                "inputMint": pool.source_mint,
                "outputMint": pool.reward_mint,
                "amount": str(to_base_units(amount_in, pool.source_decimals)),
                "slippageBps": str(bps),
                "txVersion": TX_VERSION,
            },
        )
        if "outputAmount" not in (body.get("data") or {}):
            raise PoolUnavailableError(f"quote response missing outputAmount: {body.get('msg')}")
        return body

    async def _sign_and_send(self, raw: bytes, signer: Keypair) -> str:
        """Re-sign the API-built transaction under a fresh blockhash and confirm it.

        Expiry is judged against the fetched reference, so the transaction must
        carry that reference's blockhash rather than the one the API chose.
        """
        reference = await self._ledger.get_recent_reference()
        tx = Transaction.from_bytes(raw)
        tx.sign([signer], Hash.from_string(reference.blockhash))
        signature = await self._ledger.submit(bytes(tx))
        outcome = await self._ledger.confirm(signature, reference, self._confirm_timeout)
        if outcome is not AttemptOutcome.CONFIRMED:
            raise SwapFailedError(f"swap transaction {signature[:16]} {outcome.value}")
        return signature

    async def _ensure_account(self, signer: Keypair, account: Pubkey, mint: str) -> None:
        if await self._ledger.get_account_info(str(account)) is not None:
            return
        log.info("Creating reward account %s", str(account)[:8])
        ix = create_associated_account_ix(
            signer.pubkey(), signer.pubkey(), Pubkey.from_string(mint), self._reward_program
        )
        reference = await self._ledger.get_recent_reference()
        signature = await self._ledger.submit(sign_transaction([ix], signer, reference.blockhash))
        outcome = await self._ledger.confirm(signature, reference, self._confirm_timeout)
        if outcome is not AttemptOutcome.CONFIRMED:
            raise SwapFailedError(f"reward account creation {outcome.value}")

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(method, url, **kwargs)
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"raydium timeout: {url}") from exc
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 429:
                raise RateLimitedError(f"raydium rate limited: {url}") from exc
            if exc.response.status_code >= 500:
                raise TransientNetworkError(f"raydium HTTP {exc.response.status_code}") from exc
            raise PoolUnavailableError(f"raydium HTTP {exc.response.status_code}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"raydium transport error: {exc}") from exc

        if not body.get("success", False):
            raise PoolUnavailableError(f"raydium error: {body.get('msg', 'unknown')}")
        return body


def _slippage_bps_for(quoted: Decimal, min_out: Decimal) -> int:
    """Largest slippage (bps) that still guarantees ``min_out`` against ``quoted``."""
    if quoted <= 0:
        return 0
    bps = (Decimal(1) - min_out / quoted) * 10_000
    return max(0, int(bps.to_integral_value(rounding=ROUND_DOWN)))
