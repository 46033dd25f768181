"""Repair and reporting commands for the purchasing ledger."""

from __future__ import annotations

import logging
import sys
from dataclasses import asdict

import click

from orderflow.app.config import settings
from orderflow.app.db.session import SessionLocal
from orderflow.services import reconciliation


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _run(job, batch_size: int | None):
    db = SessionLocal()
    try:
        return job(db, batch_size=batch_size)
    finally:
        db.close()


def _echo_report(report) -> None:
    for key, value in asdict(report).items():
        if isinstance(value, dict):
            click.echo(f"  {key}:")
            for inner_key, inner_value in value.items():
                click.echo(f"    {inner_key:<24} {inner_value}")
        else:
            click.echo(f"  {key:<26} {value}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--batch-size", type=int, default=None, help="Rows per committed chunk")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, batch_size: int | None) -> None:
    """Repair jobs: normalize, backfill and recompute project totals."""
    ctx.ensure_object(dict)
    ctx.obj["batch_size"] = batch_size
    _setup_logging(verbose)


@cli.command("normalize")
@click.pass_context
def normalize(ctx: click.Context) -> None:
    """Rewrite project names stored as project ids."""
    _echo_report(_run(reconciliation.normalize_project_ids, ctx.obj["batch_size"]))


@cli.command("backfill-costs")
@click.pass_context
def backfill_costs(ctx: click.Context) -> None:
    """Fill unit_cost and total_price on ledger rows."""
    _echo_report(_run(reconciliation.backfill_cost_fields, ctx.obj["batch_size"]))


@cli.command("backfill-ledger")
@click.pass_context
def backfill_ledger(ctx: click.Context) -> None:
    """Create ledger rows for received orders that have none."""
    _echo_report(_run(reconciliation.backfill_missing_ledger_rows, ctx.obj["batch_size"]))


@cli.command("recompute")
@click.pass_context
def recompute(ctx: click.Context) -> None:
    """Recompute every project's aggregates from the source tables."""
    _echo_report(_run(reconciliation.recompute_aggregates, ctx.obj["batch_size"]))


@cli.command("full")
@click.pass_context
def full(ctx: click.Context) -> None:
    """Run every repair job in order, then the discrepancy report."""
    report = _run(reconciliation.run_full_repair, ctx.obj["batch_size"])
    _echo_report(report)
    if report.discrepancies.flagged:
        sys.exit(2)


@cli.command("discrepancies")
@click.option("--amount", type=float, default=None, help="Absolute threshold (currency)")
@click.option("--percent", type=float, default=None, help="Relative threshold (percent)")
def discrepancies(amount: float | None, percent: float | None) -> None:
    """Report projects whose ledger disagrees with received orders."""
    db = SessionLocal()
    try:
        report = reconciliation.discrepancy_report(db, amount_threshold=amount, percent_threshold=percent)
    finally:
        db.close()

    click.echo(f"\nProjects checked: {report.projects_checked}")
    if not report.flagged:
        click.echo("No discrepancies above thresholds.")
        return
    click.echo(f"{len(report.flagged)} flagged:")
    for warning in report.flagged:
        click.echo(f"  - {warning}")
    sys.exit(2)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
