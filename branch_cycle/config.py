"""The config module provides the Config class.

The configuration is a JSON file with camelCase keys overlaid on defaults:

    {
        "baseBranch": "base", "uatBranch": "uat",
        "preBranch": "pre", "proBranch": "pro",
        "remoteName": "origin", "cycleDays": 14,
        "branchPrefix": "release", "autoRemoveBranches": true,
        "branchRetentionCycles": 3, "dateFormat": "yyyy-MM-dd"
    }
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

from branch_cycle.cycle_clock import DEFAULT_DATE_FORMAT, to_strftime
from branch_cycle.errors import ConfigError, ExitCode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'config.json'
DEFAULT_RETENTION_CYCLES = 3

# JSON key -> attribute name
_KEYS = {
    'baseBranch': 'base_branch',
    'uatBranch': 'uat_branch',
    'preBranch': 'pre_branch',
    'proBranch': 'pro_branch',
    'remoteName': 'remote_name',
    'cycleDays': 'cycle_days',
    'branchPrefix': 'branch_prefix',
    'autoRemoveBranches': 'auto_remove_branches',
    'branchRetentionCycles': 'branch_retention_cycles',
    'dateFormat': 'date_format',
}


@dataclass
class Config:
    """Read-only settings consumed by the orchestrator."""
    base_branch: str = 'base'
    uat_branch: str = 'uat'
    pre_branch: str = 'pre'
    pro_branch: str = 'pro'
    remote_name: str = 'origin'
    cycle_days: int = 14
    branch_prefix: str = ''
    auto_remove_branches: bool = False
    branch_retention_cycles: int = DEFAULT_RETENTION_CYCLES
    date_format: str = DEFAULT_DATE_FORMAT

    def __post_init__(self):
        self.validate()

    @property
    def env_branches(self) -> dict:
        "Environment branch per slot name."
        return {
            'base': self.base_branch,
            'uat': self.uat_branch,
            'pre': self.pre_branch,
            'pro': self.pro_branch,
        }

    def validate(self):
        "Checks types and ranges. Raises ConfigError."
        for field in fields(self):
            value = getattr(self, field.name)
            expected = field.type
            # bool is an int subclass: reject it for integer settings
            if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
                raise ConfigError(f"{field.name} must be an integer, got {value!r}")
            if expected is bool and not isinstance(value, bool):
                raise ConfigError(f"{field.name} must be a boolean, got {value!r}")
            if expected is str and not isinstance(value, str):
                raise ConfigError(f"{field.name} must be a string, got {value!r}")

        if self.cycle_days < 1:
            raise ConfigError(f"cycle_days must be >= 1, got {self.cycle_days}")
        if self.branch_retention_cycles < 1:
            logger.warning(
                "Invalid retention cycles (%s), using default of %s",
                self.branch_retention_cycles, DEFAULT_RETENTION_CYCLES)
            self.branch_retention_cycles = DEFAULT_RETENTION_CYCLES

        names = list(self.env_branches.values())
        if any(not name for name in names):
            raise ConfigError("Environment branch names must not be empty")
        if len(set(names)) != len(names):
            raise ConfigError(f"Environment branch names must be distinct: {names}")

        self.branch_prefix = self.branch_prefix.strip('/')
        if not self.date_format or not to_strftime(self.date_format).strip():
            raise ConfigError(f"Invalid date format: {self.date_format!r}")

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """
        Builds a Config from a JSON-like dict.

        Unknown keys are ignored. The legacy ``cycleWeeks`` key is converted to
        days when ``cycleDays`` is absent.
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object")
        kwargs = {attr: data[key] for key, attr in _KEYS.items() if key in data}
        if 'cycleDays' not in data and 'cycleWeeks' in data:
            weeks = data['cycleWeeks']
            if isinstance(weeks, bool) or not isinstance(weeks, int):
                raise ConfigError(f"cycleWeeks must be an integer, got {weeks!r}")
            kwargs['cycle_days'] = weeks * 7
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for key, attr in _KEYS.items()}

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'Config':
        """
        Loads the configuration file.

        Args:
            path: Explicit config file. When None, ./config.json is used if it
                exists, otherwise the defaults.

        Raises:
            ConfigError: explicit file missing (FILE_NOT_FOUND), invalid JSON
                or invalid values (CONFIG_ERROR)
        """
        if path is None:
            if not os.path.exists(DEFAULT_CONFIG_FILE):
                logger.warning("Using default configuration (%s not found)", DEFAULT_CONFIG_FILE)
                return cls()
            path = DEFAULT_CONFIG_FILE

        resolved = os.path.abspath(path)
        if not os.path.exists(resolved):
            raise ConfigError(
                f"Config file not found: {resolved}", exit_code=ExitCode.FILE_NOT_FOUND)
        try:
            with open(resolved, encoding='utf-8') as config_file:
                data = json.load(config_file)
        except (OSError, ValueError) as err:
            raise ConfigError(f"Configuration error: {err}") from err
        config = cls.from_dict(data)
        logger.debug("Loaded configuration from %s", resolved)
        return config
