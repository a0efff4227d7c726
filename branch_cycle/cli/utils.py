"""
Shared helpers for the CLI commands.
"""

from functools import wraps

import click

from branch_cycle.errors import BranchCycleError


def exit_on_error(func):
    """
    Reports BranchCycleError as ``[FATAL] message`` and exits with its code.

    The exit code tells the CI/CD pipeline what went wrong (missing branch,
    git failure, invalid date...), so errors are not turned into
    click.ClickException which always exits 1.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except BranchCycleError as err:
            click.echo(click.style(f"[FATAL] {err}", fg='red'), err=True)
            click.get_current_context().exit(int(err.exit_code))
    return wrapper


def check_mark(ok: bool) -> str:
    return click.style('✓', fg='green') if ok else click.style('✗', fg='red')
