"""
Init command implementation.

Thin CLI layer that delegates to BranchBootstrapper for business logic.
"""

import click

from branch_cycle.bootstrap import BranchBootstrapper
from branch_cycle.cli.utils import exit_on_error


@click.command('init')
@click.pass_obj
@exit_on_error
def init(cycle_ctx) -> None:
    """
    Create the date branches each environment tracks before the first cycle.

    Base gets the branch of the current cycle, uat and pre the one of the
    previous cycle, pro the one two cycles back. Targets already recorded in
    the status file are kept. Each missing branch is created from its
    environment branch and pushed.

    Examples:
        $ branch-cycle init
        $ branch-cycle --date 2025-09-01 init
    """
    today = cycle_ctx.today
    bootstrapper = BranchBootstrapper(
        cycle_ctx.config, cycle_ctx.status, cycle_ctx.backend(),
        status_path=cycle_ctx.status_path)

    click.echo("=== Initializing Required Branches ===")
    click.echo(f"Using date: {today.isoformat()}")

    created = bootstrapper.initialize(today)
    for slot, (branch, was_created) in created.items():
        state = 'created' if was_created else 'exists'
        click.echo(f"  {slot.value:<4} {branch} ({state})")

    click.echo("\n=== Initialization Complete ===")
