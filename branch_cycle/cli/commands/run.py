"""
Run command implementation.

Thin CLI layer that delegates to CycleOrchestrator for business logic.
"""

import click

from branch_cycle.cli.utils import exit_on_error
from branch_cycle.orchestrator import CycleOrchestrator, FlowKind, SyncStatus

_STATUS_COLORS = {
    SyncStatus.MERGED: 'green',
    SyncStatus.UNCHANGED: None,
    SyncStatus.SKIPPED: None,
    SyncStatus.FAILED: 'red',
}


@click.command('run')
@click.pass_obj
@exit_on_error
def run(cycle_ctx) -> None:
    """
    Run the branch cycle for today (or --date).

    On a cycle boundary: creates the new date branch from base, promotes
    base → uat/pre and uat → pro, rotates the recorded targets, then removes
    expired date branches when enabled. Any other day: merges every
    environment whose source changed since the last sync.

    Examples:
        $ branch-cycle run
        $ branch-cycle --date 2025-09-15 --dry-run run

    Exit codes:
        0 success, 3 git operation failed or run degraded,
        5 missing branch, 6 config error, 7 invalid date, 8 cancelled
    """
    orchestrator = CycleOrchestrator(
        cycle_ctx.config,
        cycle_ctx.status,
        cycle_ctx.backend(),
        status_path=cycle_ctx.status_path,
        timeout=cycle_ctx.timeout)

    click.echo("=== CI/CD Branch Management Tool ===")
    click.echo(f"Mode: {'DRY RUN' if cycle_ctx.dry_run else 'LIVE'}")
    click.echo(f"Repository: {cycle_ctx.git_dir}")

    result = orchestrator.run(cycle_ctx.today)

    click.echo()
    if result.flow is FlowKind.FULL_CYCLE:
        click.echo(f"Cycle {result.boundary.current.isoformat()} executed, "
                   f"next cycle on {result.boundary.next.isoformat()}")
        click.echo(f"  base → {result.plan.new_base_branch}")
        click.echo(f"  uat/pre → {result.plan.uat_source}")
        click.echo(f"  pro → {result.plan.pro_source}")
    else:
        click.echo(f"Off-cycle day, next cycle on {result.boundary.next.isoformat()}")

    for report in result.slots:
        label = click.style(report.status.value, fg=_STATUS_COLORS[report.status])
        click.echo(f"  {report.name:<5} {report.source} → {report.destination}: {label}"
                   + (f" ({report.detail})" if report.detail else ''))

    for branch in result.removed_branches:
        click.echo(f"  removed {branch}")

    if result.success:
        click.echo(click.style("All operations completed successfully!", fg='green'))
    else:
        click.echo(click.style("Completed with failures, see log above", fg='red'), err=True)
        click.get_current_context().exit(int(result.exit_code))
