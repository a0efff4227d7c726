"""
Main CLI module - Creates and configures the CLI group
"""

from datetime import date
from typing import Optional

import click

from branch_cycle import __version__
from branch_cycle.config import Config
from branch_cycle.cycle_clock import parse_date
from branch_cycle.git_backend import GitBackend
from branch_cycle.logs import setup_logging
from branch_cycle.status_store import StatusStore
from .commands import ALL_COMMANDS


class CycleContext:
    """Holds the command line options and lazily loads what commands need."""

    def __init__(self, config_path: Optional[str], status_path: str, git_dir: str,
                 dry_run: bool, custom_date: Optional[str], timeout: Optional[float]):
        self.config_path = config_path
        self.status_path = status_path
        self.git_dir = git_dir
        self.dry_run = dry_run
        self.custom_date = custom_date
        self.timeout = timeout
        self.__config: Optional[Config] = None
        self.__status: Optional[StatusStore] = None
        self.__backend: Optional[GitBackend] = None

    @property
    def config(self) -> Config:
        if self.__config is None:
            self.__config = Config.load(self.config_path)
        return self.__config

    @property
    def status(self) -> StatusStore:
        if self.__status is None:
            self.__status = StatusStore.load(self.status_path)
        return self.__status

    def backend(self, dry_run: Optional[bool] = None) -> GitBackend:
        "Returns the git backend; dry_run overrides the --dry-run option."
        if dry_run is None:
            dry_run = self.dry_run
        if self.__backend is None or self.__backend.dry_run != dry_run:
            self.__backend = GitBackend(
                self.git_dir, remote_name=self.config.remote_name, dry_run=dry_run)
        return self.__backend

    @property
    def today(self) -> date:
        "The --date option parsed under the configured format, else today."
        if self.custom_date:
            return parse_date(self.custom_date, self.config.date_format)
        return date.today()


def create_cli_group():
    """
    Creates and returns the CLI group with every command.

    Returns:
        click.Group: Configured CLI group
    """

    @click.group()
    @click.option('-c', '--config', 'config_path', type=click.Path(dir_okay=False),
                  default=None, help='Path to configuration file (default: ./config.json)')
    @click.option('-s', '--status', 'status_path', type=click.Path(dir_okay=False),
                  default='status.json', show_default=True, help='Path to status file')
    @click.option('-g', '--git-dir', type=click.Path(file_okay=False), default='.',
                  show_default=True, help='Path to git repository')
    @click.option('-d', '--dry-run', is_flag=True, help='Perform a dry run without making changes')
    @click.option('--date', 'custom_date', default=None,
                  help='Use specific date (in the configured date format)')
    @click.option('--timeout', type=float, default=None,
                  help='Stop at the next step boundary after this many seconds')
    @click.option('-v', '--verbose', is_flag=True, help='Show debug output')
    @click.option('--log-file', type=click.Path(dir_okay=False), default=None,
                  help='Also write the full log to this file')
    @click.version_option(__version__, prog_name='branch-cycle')
    @click.pass_context
    def cli(ctx, config_path, status_path, git_dir, dry_run, custom_date, timeout,
            verbose, log_file):
        """CI/CD branch cycle tool - promotes base → uat → pre → pro on a fixed cycle"""
        setup_logging(verbose=verbose, log_file=log_file)
        ctx.obj = CycleContext(
            config_path, status_path, git_dir, dry_run, custom_date, timeout)

    for command in ALL_COMMANDS.values():
        cli.add_command(command)

    return cli


def main():
    "Console script entry point."
    cli = create_cli_group()
    cli(prog_name='branch-cycle')
