"""
Commands module for branch-cycle CLI

Provides all individual command implementations.
"""

from .run import run
from .init import init
from .verify import verify
from .status import status
from .schedule import schedule

# Registry of all available commands
ALL_COMMANDS = {
    'run': run,
    'init': init,
    'verify': verify,
    'status': status,
    'schedule': schedule,
}

__all__ = [
    'run',
    'init',
    'verify',
    'status',
    'schedule',
    'ALL_COMMANDS'
]
