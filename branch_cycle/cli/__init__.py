"""
Command line interface for branch-cycle.
"""

from .main import create_cli_group, main

__all__ = ['create_cli_group', 'main']
