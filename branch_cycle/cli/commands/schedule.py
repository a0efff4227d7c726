"""
Schedule command implementation.

Tells a CI/CD pipeline whether today is a cycle boundary.
"""

import click

from branch_cycle.cli.utils import exit_on_error
from branch_cycle.cycle_clock import cycle_boundary, is_execution_day
from branch_cycle.errors import ExitCode


@click.command('schedule')
@click.pass_obj
@exit_on_error
def schedule(cycle_ctx) -> None:
    """
    Show the cycle boundaries for today (or --date).

    Exit codes:
        0 today is an execution day, 4 it is an off-cycle day
    """
    today = cycle_ctx.today
    last_cycle_date = cycle_ctx.status.ledger.last_cycle_date
    cycle_days = cycle_ctx.config.cycle_days
    boundary = cycle_boundary(today, last_cycle_date, cycle_days)

    click.echo(f"Date:          {today.isoformat()}")
    click.echo(f"Current cycle: {boundary.current.isoformat()}")
    click.echo(f"Next cycle:    {boundary.next.isoformat()}")

    if is_execution_day(today, last_cycle_date, cycle_days):
        click.echo(click.style("Execution day", fg='green'))
        return
    click.echo(f"{today.isoformat()} is not a scheduled execution day")
    click.get_current_context().exit(int(ExitCode.NOT_EXECUTION_DAY))
