"""
RetentionSweeper module for branch-cycle

Deletes the date branches created by past cycles once they are older than
``branch_retention_cycles * cycle_days`` days.

Only branches recorded in the status store and named under the configured
prefix are candidates. Environment branches and branches still tracked by a
slot are never deleted.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from branch_cycle.config import Config
from branch_cycle.status_store import StatusStore

logger = logging.getLogger(__name__)

DAY_MILLIS = 24 * 60 * 60 * 1000


class RetentionSweeper:
    """
    Removes expired date branches, locally and on the remote.

    Deletion is best effort: a failed delete is logged and the branch is
    untracked anyway so that it is not retried forever.
    """

    def __init__(self, config: Config, status: StatusStore, backend,
                 now: Optional[Callable[[], datetime]] = None):
        self._config = config
        self._status = status
        self._backend = backend
        self._now = now or (lambda: datetime.now(timezone.utc))

    def cutoff(self) -> int:
        "Creation time (epoch ms) before which a tracked branch has expired."
        now_ms = int(self._now().timestamp() * 1000)
        retention_days = self._config.branch_retention_cycles * self._config.cycle_days
        return now_ms - retention_days * DAY_MILLIS

    def candidates(self) -> List[str]:
        "Tracked branches old enough and safe to delete, oldest first."
        prefix = f"{self._config.branch_prefix}/"
        protected = set(self._config.env_branches.values()) | self._status.current_targets()
        cutoff = self.cutoff()
        names = []
        for tracked in sorted(self._status.tracked_branches, key=lambda item: item.created_at):
            if tracked.created_at >= cutoff:
                continue
            if not tracked.name.startswith(prefix):
                logger.warning("Tracked branch %s is outside prefix %s, keeping it",
                               tracked.name, prefix)
                continue
            if tracked.name in protected:
                logger.warning("Branch %s is still in use, keeping it", tracked.name)
                continue
            names.append(tracked.name)
        return names

    def sweep(self) -> List[str]:
        """
        Deletes expired branches and untracks them.

        Returns:
            List[str]: Branches whose deletion was attempted
        """
        if not self._config.auto_remove_branches:
            return []
        if not self._config.branch_prefix:
            logger.info("No branch prefix configured, skipping branch cleanup")
            return []

        names = self.candidates()
        if not names:
            logger.info("No old branches to remove")
            return []

        logger.info("=== Cleaning up old branches ===")
        logger.info("Retention policy: keep %s cycles of %s days",
                    self._config.branch_retention_cycles, self._config.cycle_days)
        for name in names:
            result = self._backend.delete_branch(name, critical=False)
            if result.failed:
                logger.warning("Failed to delete %s: %s", name, result.error)
            self._status.untrack_branch(name)
        logger.info("Cleaned up %s old branches", len(names))
        return names
