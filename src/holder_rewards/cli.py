"""CLI entry point for holder reward distribution."""

from __future__ import annotations

import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation

import click

from holder_rewards.config import load_config
from holder_rewards.distribution.cycle import DistributionCycle, run_cycle
from holder_rewards.errors import DistributorError
from holder_rewards.models.config import DistributorConfig
from holder_rewards.policy.eligibility import EligibilityFilter
from holder_rewards.pool.raydium import RaydiumPoolBackend
from holder_rewards.solana.client import SolanaLedgerClient
from holder_rewards.solana.holders import TokenHolderEnumerator
from holder_rewards.solana.instructions import load_keypair
from holder_rewards.storage.sqlite import SQLiteStateStore


def _read(ctx: click.Context) -> DistributorConfig:
    """Load config without validating it, or exit with the error."""
    try:
        return load_config(ctx.obj["config_path"])
    except DistributorError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _load(ctx: click.Context, require_signer: bool = False) -> DistributorConfig:
    """Load and validate config, or exit with the error."""
    cfg = _read(ctx)
    try:
        cfg.validate(require_signer=require_signer)
    except DistributorError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    return cfg


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {value}") from None


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """holder-rewards - Convert token fees and distribute them to holders."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show distributor configuration."""
    cfg = _read(ctx)
    click.echo(f"RPC URL:       {cfg.rpc_url or '(not set)'}")
    click.echo(f"Token mint:    {cfg.token_mint or '(not set)'} ({cfg.token_program.value})")
    click.echo(f"Reward mint:   {cfg.reward_mint or '(not set)'}")
    click.echo(f"Pool:          {cfg.pool_id or '(not set)'}")
    click.echo(f"Reward share:  {cfg.reward_share_pct}% of collected fees")
    click.echo(f"Min holding:   {cfg.minimum_holding_threshold}")
    click.echo(f"Min payout:    {cfg.minimum_payout_threshold}")
    click.echo(f"Slippage:      {cfg.slippage_tolerance_bps} bps")
    click.echo(f"Excluded:      {len(cfg.excluded_wallets)} wallets")
    click.echo(
        f"Retries:       {cfg.max_retries} (backoff {cfg.initial_backoff_ms}"
        f"-{cfg.max_backoff_ms}ms, spacing {cfg.inter_batch_spacing_ms}ms)"
    )
    click.echo(f"Carry forward: {'on' if cfg.carry_forward_remainder else 'off'}")
    click.echo(f"DB path:       {cfg.db_path}")
    click.echo(f"Secret:        {'***configured***' if cfg.has_signer else '(not set)'}")


@cli.command()
@click.pass_context
def holders(ctx: click.Context) -> None:
    """Snapshot token holders and show eligibility counts."""
    cfg = _load(ctx)

    async def _holders():
        ledger = SolanaLedgerClient(cfg)
        try:
            snapshot = await TokenHolderEnumerator(ledger, cfg).snapshot()
        finally:
            await ledger.close()
        result = EligibilityFilter(cfg.minimum_holding_threshold).apply(snapshot)
        total = sum((h.balance for h in result.qualified), Decimal(0))
        click.echo(f"Holders:      {result.total_holders}")
        click.echo(f"Qualified:    {len(result.qualified)} (>= {cfg.minimum_holding_threshold})")
        click.echo(f"Disqualified: {result.disqualified_count}")
        click.echo(f"Qualified balance: {total}")
        for holder in result.qualified[:10]:
            click.echo(f"  {holder.address}  {holder.balance}")
        if len(result.qualified) > 10:
            click.echo(f"  ... and {len(result.qualified) - 10} more")

    asyncio.run(_holders())


# ── Distribution ───────────────────────────────────────


@cli.command()
@click.option("--amount", required=True, help="Reward amount to plan for (reward asset units)")
@click.pass_context
def plan(ctx: click.Context, amount: str) -> None:
    """Dry-run: plan payouts and batches for AMOUNT. Nothing is sent."""
    cfg = _load(ctx, require_signer=True)
    reward = _decimal(amount)

    async def _plan():
        ledger = SolanaLedgerClient(cfg)
        try:
            cycle = DistributionCycle(
                cfg, ledger, RaydiumPoolBackend(ledger, cfg), load_keypair(cfg)
            )
            result, payout_plan, batches = await cycle.preview(reward)
        finally:
            await ledger.close()
        _echo_plan(result.total_holders, len(result.qualified), payout_plan, batches)

    try:
        asyncio.run(_plan())
    except DistributorError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Quote and plan only; no swap, no transfers")
@click.pass_context
def run(ctx: click.Context, yes: bool, dry_run: bool) -> None:
    """Run one distribution cycle: convert fees, then pay holders."""
    cfg = _load(ctx, require_signer=True)

    if dry_run:
        async def _dry_run():
            ledger = SolanaLedgerClient(cfg)
            try:
                cycle = DistributionCycle(
                    cfg, ledger, RaydiumPoolBackend(ledger, cfg), load_keypair(cfg)
                )
                fee_balance, amount = await cycle.conversion_amount()
                click.echo(f"Fee balance:  {fee_balance}")
                click.echo(f"To convert:   {amount} ({cfg.reward_share_pct}%)")
                if amount <= 0:
                    click.echo("Nothing to convert.")
                    return
                pool = await cycle.converter.check_liquidity(amount)
                quote = await cycle.converter.quote(amount, pool)
                click.echo(f"Quoted out:   {quote.estimated_output}")
                click.echo(
                    f"Min out:      {cycle.converter.min_acceptable_output(quote.estimated_output)}"
                )
                result, payout_plan, batches = await cycle.preview(quote.estimated_output)
            finally:
                await ledger.close()
            _echo_plan(result.total_holders, len(result.qualified), payout_plan, batches)

        try:
            asyncio.run(_dry_run())
        except DistributorError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)
        return

    if not yes:
        click.confirm(
            f"Convert {cfg.reward_share_pct}% of collected fees and distribute to holders?",
            abort=True,
        )

    async def _run():
        store = SQLiteStateStore(cfg.db_path)
        await store.initialize()
        try:
            return await run_cycle(cfg, store)
        finally:
            await store.close()

    try:
        summary = asyncio.run(_run())
    except DistributorError as exc:
        click.echo(f"Cycle aborted: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Cycle:      {summary.cycle_id}")
    click.echo(f"Holders:    {summary.holders_qualified}/{summary.holders_total} qualified")
    click.echo(f"Converted:  {summary.fee_input} -> {summary.total_reward}")
    click.echo(
        f"Batches:    {summary.batches_confirmed}/{summary.batches_total} confirmed, "
        f"{summary.batches_failed} failed, {summary.batches_cancelled} cancelled"
    )
    click.echo(f"Paid:       {summary.distributed_amount} (remainder {summary.remainder})")
    for sig in summary.signatures:
        click.echo(f"  {sig}")
    for outcome in summary.failed_batches:
        click.echo(f"  FAILED batch #{outcome.batch_id}: {outcome.error}", err=True)
    if summary.aborted_reason:
        click.echo(f"Stopped:    {summary.aborted_reason}", err=True)
    if summary.partial_failure:
        sys.exit(1)


# ── History ────────────────────────────────────────────


@cli.command()
@click.option("-n", "--limit", type=int, default=10, help="Number of cycles to show")
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """Show recent distribution cycles."""
    cfg = _read(ctx)

    async def _history():
        store = SQLiteStateStore(cfg.db_path)
        await store.initialize()
        try:
            records = await store.get_cycle_history(limit)
        finally:
            await store.close()
        if not records:
            click.echo("No cycles recorded.")
            return
        for r in records:
            click.echo(
                f"{r.started_at[:19]}  {r.cycle_id[:8]}  {r.status:<9}  "
                f"holders {r.holders_qualified}/{r.holders_total}  "
                f"batches {r.batches_confirmed}/{r.batches_total} ({r.batches_failed} failed)  "
                f"paid {r.distributed} of {r.total_reward}"
            )
            if r.error:
                click.echo(f"    error: {r.error}")

    asyncio.run(_history())


@cli.command()
@click.argument("cycle_id")
@click.pass_context
def attempts(ctx: click.Context, cycle_id: str) -> None:
    """Show the submission attempt log for CYCLE_ID."""
    cfg = _read(ctx)

    async def _attempts():
        store = SQLiteStateStore(cfg.db_path)
        await store.initialize()
        try:
            records = await store.get_attempts(cycle_id)
        finally:
            await store.close()
        if not records:
            click.echo(f"No attempts recorded for {cycle_id}.")
            return
        for a in records:
            line = f"batch #{a.batch_id}  attempt {a.attempt}  {a.outcome:<12}"
            if a.backoff_ms:
                line += f"  backoff {a.backoff_ms}ms"
            if a.signature:
                line += f"  {a.signature[:16]}"
            if a.error:
                line += f"  {a.error}"
            click.echo(line)

    asyncio.run(_attempts())


def _echo_plan(holders_total: int, qualified: int, payout_plan, batches) -> None:
    click.echo(f"Holders:       {qualified}/{holders_total} qualified")
    click.echo(f"Total reward:  {payout_plan.total_reward_amount}")
    click.echo(f"Payable:       {payout_plan.total_payable} to {len(payout_plan.entries)} holders")
    click.echo(f"Remainder:     {payout_plan.remainder}")
    click.echo(f"Below holding: {payout_plan.skipped_below_min_holding}")
    click.echo(f"Below payout:  {payout_plan.skipped_below_min_payout}")
    click.echo(f"Batches:       {len(batches)}")
    for batch in batches:
        click.echo(
            f"  #{batch.batch_id}: {len(batch.recipients)} recipients, {batch.amount}, "
            f"{batch.estimated_size_bytes} bytes, {batch.account_creations} new accounts"
        )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
