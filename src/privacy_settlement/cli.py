"""CLI entry point for the settlement tools."""

from __future__ import annotations

import json
import os

import click

from .core.models import DEFAULT_TICK_SPACING, ClaimableOrder


@click.group()
def main() -> None:
    """Privacy settlement: claimable orders and claims."""


@main.command()
@click.option("--user", required=True, help="Account address to reconcile")
@click.option("--config", default=None, help="Config file path")
@click.option("--lookback", default=None, type=int, help="Override lookback window (blocks)")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def claimable(user: str, config: str | None, lookback: int | None, as_json: bool) -> None:
    """List claimable orders, most recent first."""
    import asyncio

    from .main import run_claimable

    overrides: dict = {}
    if lookback is not None:
        overrides["chain"] = {"lookback_blocks": lookback}

    run = asyncio.run(run_claimable(user, config_path=config, overrides=overrides))
    if run is None:
        click.echo("Reconciliation superseded; try again.", err=True)
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps([o.model_dump(mode="json") for o in run.orders], indent=2))
    else:
        click.echo(f"Blocks {run.from_block}..{run.to_block}")
        _print_orders(list(run.orders))
    for failure in run.probe_failures:
        click.echo(f"  ! could not read {failure.key}: {failure.cause}", err=True)


@main.command("claim-all")
@click.option("--config", default=None, help="Config file path")
@click.option(
    "--private-key-env",
    default="SETTLEMENT_PRIVATE_KEY",
    show_default=True,
    help="Environment variable holding the signing key",
)
def claim_all(config: str | None, private_key_env: str) -> None:
    """Claim every claimable order of the signing account."""
    import asyncio

    from .main import run_claim_all

    key = os.environ.get(private_key_env, "")
    if not key:
        raise click.UsageError(f"${private_key_env} is not set")

    summary = asyncio.run(run_claim_all(key, config_path=config))
    click.echo(f"Claimed {len(summary.claimed)} of {summary.attempted}")
    for key_, tx in zip(summary.claimed, summary.tx_hashes):
        click.echo(f"  ok   {key_}  {tx}")
    for failure in summary.failures:
        click.echo(f"  FAIL {failure.key}  {failure.reason}")
    if summary.refreshed is not None:
        click.echo("Remaining claimable:")
        _print_orders(summary.refreshed)
    elif summary.refresh_error is not None:
        click.echo(f"Could not refresh claimable orders: {summary.refresh_error}")
    if summary.failures:
        raise SystemExit(1)


@main.command("pool-id")
@click.option("--token-a", required=True, help="First token address")
@click.option("--token-b", required=True, help="Second token address")
@click.option("--hook", required=True, help="Settlement engine (hook) address")
@click.option("--fee", default=3000, type=int, show_default=True, help="Pool fee (hundredths of a bip)")
@click.option("--tick-spacing", default=DEFAULT_TICK_SPACING, type=int, show_default=True)
def pool_id(token_a: str, token_b: str, hook: str, fee: int, tick_spacing: int) -> None:
    """Compute a pool identifier from its tokens and hook."""
    from .ledger.pool_id import pool_id_from_tokens

    click.echo(pool_id_from_tokens(token_a, token_b, hook, fee, tick_spacing))


def _print_orders(orders: list[ClaimableOrder]) -> None:
    if not orders:
        click.echo("  (none)")
        return
    click.echo(f"  {'Pool':<14} {'Tick':>8} {'Side':<5} {'Type':<6} {'Price':>14} {'Trigger':>10}")
    for o in orders:
        click.echo(
            f"  {o.pool_id[:12]:<14} {o.tick:>8} {o.side_label:<5} "
            f"{o.order_type.value:<6} {o.price:>14.6g} {o.trigger_block:>10}"
        )
