"""
Verify command implementation.

Read-only check that every branch of the next full cycle exists.
"""

import click

from branch_cycle.bootstrap import BranchBootstrapper
from branch_cycle.cli.utils import check_mark, exit_on_error
from branch_cycle.errors import ExitCode


@click.command('verify')
@click.pass_obj
@exit_on_error
def verify(cycle_ctx) -> None:
    """
    Check that the required branches exist.

    Checks the four environment branches and the uat/pro sources the next
    full cycle will read. Never changes anything.

    Exit codes:
        0 all branches exist, 5 at least one is missing
    """
    today = cycle_ctx.today
    bootstrapper = BranchBootstrapper(
        cycle_ctx.config, cycle_ctx.status, cycle_ctx.backend(dry_run=True))

    click.echo("=== CI/CD Branch Verification ===")
    click.echo(f"Using date: {today.isoformat()}")
    click.echo("\nChecking required branches:")

    report = bootstrapper.verify(today)
    for branch, exists in report.checks:
        suffix = '' if exists else ' (missing)'
        click.echo(f"  {check_mark(exists)} {branch}{suffix}")

    click.echo("\n=== Verification Result ===")
    if report.ok:
        click.echo("All required branches exist")
        return
    click.echo("Missing required branches - fix before running workflow", err=True)
    click.get_current_context().exit(int(ExitCode.MISSING_BRANCHES))
