"""
Status command implementation.

Displays the recorded targets, fingerprints, cycle ledger and tracked branches.
"""

import click

from branch_cycle.cli.utils import exit_on_error
from branch_cycle.status_store import Slot


@click.command('status')
@click.pass_obj
@exit_on_error
def status(cycle_ctx) -> None:
    """Show the recorded state of every environment."""
    store = cycle_ctx.status
    config = cycle_ctx.config

    click.echo(click.style('Environments', bold=True))
    for slot in Slot:
        env_branch = config.env_branches[slot.value]
        target = store.get_branch(slot) or click.style('unset', fg='yellow')
        fingerprint = store.get_fingerprint(slot)
        commit = f" @ {fingerprint.short_hash} {fingerprint.message}" if fingerprint else ''
        click.echo(f"  {slot.value:<4} {env_branch:<12} → {target}{commit}")

    click.echo(click.style('\nCycle', bold=True))
    ledger = store.ledger
    click.echo(f"  last cycle: {ledger.last_cycle_date or 'never'}")
    click.echo(f"  next cycle: {ledger.ahead_cycle_date or 'first run'}")
    click.echo(f"  length:     {config.cycle_days} days")
    if store.pending_cycle is not None:
        pending = store.pending_cycle
        click.echo(click.style(
            f"  unfinished cycle {pending.cycle_date}: "
            f"completed {', '.join(pending.completed) or 'nothing'}", fg='yellow'))

    click.echo(click.style('\nTracked branches', bold=True))
    if not store.tracked_branches:
        click.echo('  none')
    for tracked in store.tracked_branches:
        click.echo(f"  {tracked.name} (created {tracked.created_at})")
