"""
BranchBootstrapper module for branch-cycle

Prepares a repository for its first cycle (``init``) and checks that the
branches the next full cycle reads exist (``verify``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from branch_cycle.config import Config
from branch_cycle.cycle_clock import cycle_boundary, format_branch_name
from branch_cycle.errors import GitOperationFailed, MissingBranchError
from branch_cycle.orchestrator import plan_cycle
from branch_cycle.status_store import Slot, StatusStore

logger = logging.getLogger(__name__)


@dataclass
class VerificationReport:
    """Existence of every branch the next full cycle reads, in check order."""
    checks: List[Tuple[str, bool]] = field(default_factory=list)

    @property
    def missing(self) -> List[str]:
        return [branch for branch, exists in self.checks if not exists]

    @property
    def ok(self) -> bool:
        return not self.missing


class BranchBootstrapper:
    """
    Creates the date branches each environment needs before the first cycle.

    Attributes:
        _config: Loaded configuration
        _status: Status store, updated by initialize()
        _backend: GitBackend
        _status_path: Where initialize() flushes the store
    """

    def __init__(self, config: Config, status: StatusStore, backend,
                 status_path: Optional[str] = None):
        self._config = config
        self._status = status
        self._backend = backend
        self._status_path = status_path

    def default_targets(self, today: date) -> Dict[Slot, str]:
        """
        Targets derived from the calendar: base on the current boundary, uat
        and pre one cycle back, pro two cycles back.
        """
        boundary = cycle_boundary(
            today, self._status.ledger.last_cycle_date, self._config.cycle_days)

        def branch_for(cycles_back: int) -> str:
            day = boundary.current - timedelta(days=cycles_back * self._config.cycle_days)
            return format_branch_name(self._config.branch_prefix, day, self._config.date_format)

        return {
            Slot.BASE: branch_for(0),
            Slot.UAT: branch_for(1),
            Slot.PRE: branch_for(1),
            Slot.PRO: branch_for(2),
        }

    def initialize(self, today: date) -> Dict[Slot, Tuple[str, bool]]:
        """
        Creates every missing slot target from its environment branch.

        Recorded targets are kept; unset ones take the calendar defaults.
        Each created branch is pushed immediately.

        Returns:
            dict: slot -> (target branch, created)

        Raises:
            MissingBranchError: If an environment branch does not exist
            GitOperationFailed: If a branch cannot be created or pushed
        """
        defaults = self.default_targets(today)
        targets = {slot: self._status.get_branch(slot) or defaults[slot] for slot in Slot}
        env_branches = self._config.env_branches

        missing = [env_branches[slot.value] for slot in Slot
                   if not self._backend.branch_exists(env_branches[slot.value])]
        if missing:
            raise MissingBranchError(missing)

        created = {}
        for slot in Slot:
            target = targets[slot]
            source = env_branches[slot.value]
            logger.info("Processing %s branch: %s", slot.value, target)
            if self._backend.branch_exists(target):
                logger.info("Branch %s already exists", target)
                created[slot] = (target, False)
                continue
            logger.warning("Branch %s missing - creating from %s", target, source)
            result = self._backend.create_branch(source, target)
            if result.failed:
                raise GitOperationFailed(f"Creating {target}", result.error or '')
            self._backend.push(target)
            created[slot] = (target, True)

        for slot in Slot:
            self._status.set_target(slot, targets[slot])
        if self._backend.dry_run:
            logger.info("[DRY RUN] Status not written")
        else:
            self._status.save(self._status_path)
        return created

    def verify(self, today: date) -> VerificationReport:
        "Checks the environment branches and the sources of the next full cycle."
        boundary = cycle_boundary(
            today, self._status.ledger.last_cycle_date, self._config.cycle_days)
        plan = plan_cycle(self._config, self._status, boundary)
        required = list(dict.fromkeys(
            list(self._config.env_branches.values()) + [plan.uat_source, plan.pro_source]))
        report = VerificationReport()
        for branch in required:
            report.checks.append((branch, self._backend.branch_exists(branch)))
        return report
