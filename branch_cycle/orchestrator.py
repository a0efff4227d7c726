"""
CycleOrchestrator module for branch-cycle

Drives the environment branches (base → uat → pre → pro) through date-named
branches on a fixed-length cycle.

Two flows:

- full cycle, on a cycle boundary: cut the new date branch from base,
  promote one generation down the chain, rotate the recorded targets;
- off-cycle sweep, any other day: re-sync every environment whose source
  changed since the last successful sync.

Progress is flushed to the status file after every completed step so that an
interrupted run resumes without redoing completed work.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from git.exc import GitCommandError

from branch_cycle.config import Config
from branch_cycle.cycle_clock import (
    CycleBoundary, cycle_boundary, format_branch_name, format_date, is_execution_day
)
from branch_cycle.decorators import cycle_step
from branch_cycle.errors import (
    BranchCycleError, ExitCode, GitOperationFailed, MissingBranchError, RunCancelled
)
from branch_cycle.retention import RetentionSweeper
from branch_cycle.status_store import CommitFingerprint, PendingCycle, Slot, StatusStore

logger = logging.getLogger(__name__)


class RunState(Enum):
    IDLE = 'idle'
    DECIDING = 'deciding'
    FULL_CYCLE = 'full-cycle'
    OFF_CYCLE = 'off-cycle'
    PERSISTING = 'persisting'
    DONE = 'done'
    FAILED = 'failed'


class FlowKind(Enum):
    FULL_CYCLE = 'full-cycle'
    OFF_CYCLE = 'off-cycle'


class Outcome(Enum):
    SUCCESS = 'success'
    DEGRADED = 'degraded'


class SyncStatus(Enum):
    MERGED = 'merged'
    UNCHANGED = 'unchanged'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass
class SyncPair:
    """
    One merge of the sweep: source is fingerprinted, destination receives it.

    The ahead pair has no slot, its fingerprint lives on the ledger.
    """
    name: str
    slot: Optional[Slot]
    source: Optional[str]
    destination: Optional[str]
    no_ff: bool = False


@dataclass
class SlotReport:
    name: str
    source: Optional[str]
    destination: Optional[str]
    status: SyncStatus
    detail: str = ''


@dataclass
class CyclePlan:
    """Branches a full cycle reads and writes."""
    boundary: CycleBoundary
    new_base_branch: str
    uat_source: str
    pro_source: str
    resumed: bool = False
    # Source fingerprints taken right before each promotion merge.
    observed: Dict[Slot, CommitFingerprint] = field(default_factory=dict)


@dataclass
class RunResult:
    flow: FlowKind
    outcome: Outcome
    today: date
    boundary: CycleBoundary
    plan: Optional[CyclePlan] = None
    slots: List[SlotReport] = field(default_factory=list)
    removed_branches: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.SUCCESS if self.success else ExitCode.GIT_OPERATION_FAILED


def plan_cycle(config: Config, status: StatusStore, boundary: CycleBoundary) -> CyclePlan:
    """
    Computes the branches of the full cycle starting at boundary.current.

    Chain collapse: uat takes the recorded base target and pro takes the
    recorded uat target, so every environment lags its upstream neighbour by
    at most one generation whatever the drift accumulated before.

    When the base slot already tracks this boundary's branch (set by ``init``)
    nothing moves down the chain: uat and pro keep their recorded targets.
    Unset targets default to the branches named one and two cycles back.

    A pending cycle record for the same boundary takes precedence: its
    sources were computed before the interrupted run changed anything.
    """
    pending = status.pending_cycle
    if pending is not None and pending.cycle_date == boundary.current:
        return CyclePlan(
            boundary=boundary,
            new_base_branch=pending.new_base_branch,
            uat_source=pending.uat_source,
            pro_source=pending.pro_source,
            resumed=True)

    def branch_for(cycles_back: int) -> str:
        day = boundary.current - timedelta(days=cycles_back * config.cycle_days)
        return format_branch_name(config.branch_prefix, day, config.date_format)

    new_base_branch = branch_for(0)
    base_target = status.get_branch(Slot.BASE)
    uat_target = status.get_branch(Slot.UAT)
    pro_target = status.get_branch(Slot.PRO)

    if base_target == new_base_branch:
        uat_source = uat_target or branch_for(1)
        pro_source = pro_target or branch_for(2)
    else:
        uat_source = base_target or branch_for(1)
        pro_source = uat_target or branch_for(2)

    return CyclePlan(
        boundary=boundary,
        new_base_branch=new_base_branch,
        uat_source=uat_source,
        pro_source=pro_source)


class CycleOrchestrator:
    """
    Runs one cycle decision and the resulting flow.

    State machine:
        IDLE → DECIDING → {FULL_CYCLE | OFF_CYCLE} → PERSISTING → DONE,
        FAILED reachable from any git step.

    Examples:
        orchestrator = CycleOrchestrator(config, status, backend, 'status.json')
        result = orchestrator.run(date.today())
        if not result.success:
            sys.exit(result.exit_code)
    """

    def __init__(self, config: Config, status: StatusStore, backend,
                 status_path: Optional[str] = None,
                 now: Optional[Callable[[], datetime]] = None,
                 cancel_event: Optional[threading.Event] = None,
                 timeout: Optional[float] = None):
        """
        Initialize CycleOrchestrator.

        Args:
            config: Loaded configuration
            status: Loaded status store, mutated in place
            backend: GitBackend (or any object with the same operations)
            status_path: Where to flush the store; None keeps it in memory
            now: Clock for tracked branch timestamps (UTC now by default)
            cancel_event: Set it to stop the run at the next step boundary
            timeout: Seconds after which the run stops at the next step boundary
        """
        self._config = config
        self._status = status
        self._backend = backend
        self._status_path = status_path
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._cancel_event = cancel_event or threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None
        self.state = RunState.IDLE

    @property
    def status(self) -> StatusStore:
        return self._status

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self._backend, 'dry_run', False))

    def cancel(self) -> None:
        "Requests cancellation; honored at the next step boundary."
        self._cancel_event.set()

    def _check_cancelled(self, step_name: str) -> None:
        timed_out = self._deadline is not None and time.monotonic() >= self._deadline
        if self._cancel_event.is_set() or timed_out:
            reason = 'timeout reached' if timed_out else 'cancellation requested'
            raise RunCancelled(f"Run stopped before step '{step_name}': {reason}")

    def _persist(self) -> None:
        "Flushes the status store. Dry runs keep it in memory only."
        if self.dry_run:
            logger.debug("[DRY RUN] Status not written")
            return
        self._status.save(self._status_path)

    # ------------------------------------------------------------------ run

    def run(self, today: date) -> RunResult:
        """
        Decides the flow for today and runs it.

        Returns:
            RunResult: outcome SUCCESS, or DEGRADED when a non-critical step
            failed (the remaining steps still ran)

        Raises:
            MissingBranchError: A branch of the full cycle does not exist
            GitOperationFailed: A critical git step failed
            RunCancelled: Cancellation honored at a step boundary
        """
        self.state = RunState.DECIDING
        last_cycle_date = self._status.ledger.last_cycle_date
        logger.info("Using date: %s", today.isoformat())
        try:
            if is_execution_day(today, last_cycle_date, self._config.cycle_days):
                self.state = RunState.FULL_CYCLE
                result = self._run_full_cycle(today)
            else:
                self.state = RunState.OFF_CYCLE
                logger.warning("%s is not a scheduled execution day.", today.isoformat())
                result = self._run_off_cycle(today)
            self.state = RunState.PERSISTING
            self._persist()
        except BranchCycleError:
            self.state = RunState.FAILED
            raise
        self.state = RunState.DONE
        result.dry_run = self.dry_run
        return result

    def _run_off_cycle(self, today: date) -> RunResult:
        boundary = cycle_boundary(
            today, self._status.ledger.last_cycle_date, self._config.cycle_days)
        logger.info("=== Off-cycle sync (cycle %s, next %s) ===",
                    boundary.current.isoformat(), boundary.next.isoformat())
        self._check_cancelled('fetch')
        fetched = self._backend.fetch(critical=False)
        if fetched.failed:
            logger.warning("Fetch failed, comparing against local refs only")
        reports = self.sweep()
        return RunResult(
            flow=FlowKind.OFF_CYCLE,
            outcome=_outcome(reports),
            today=today,
            boundary=boundary,
            slots=reports)

    def _run_full_cycle(self, today: date) -> RunResult:
        boundary = cycle_boundary(
            today, self._status.ledger.last_cycle_date, self._config.cycle_days)

        self._sync_root_base()

        plan = self._prepare_plan(boundary)
        logger.info("=== Cycle Information ===")
        logger.info("Cycle start date: %s", format_date(boundary.current, self._config.date_format))
        logger.info("New base branch: %s", plan.new_base_branch)
        logger.info("UAT source branch: %s", plan.uat_source)
        logger.info("PRO source branch: %s", plan.pro_source)

        self._verify_branches(plan)
        self._record_pending(plan)

        self._create_or_merge_base(plan)
        self._merge_uat(plan)
        self._merge_pre(plan)
        self._merge_pro(plan)
        self._track_new_base(plan)
        self._rotate(plan)

        logger.info("=== Post-cycle sync ===")
        reports = self.sweep()
        result = RunResult(
            flow=FlowKind.FULL_CYCLE,
            outcome=_outcome(reports),
            today=today,
            boundary=boundary,
            plan=plan,
            slots=reports)

        if result.success:
            sweeper = RetentionSweeper(self._config, self._status, self._backend, now=self._now)
            result.removed_branches = sweeper.sweep()
            self._persist()
        return result

    # ---------------------------------------------------------- full cycle

    def _sync_root_base(self) -> None:
        self._check_cancelled('sync-base')
        logger.info("=== Updating %s ===", self._config.base_branch)
        self._backend.fetch()
        self._backend.pull(self._config.base_branch)

    def _prepare_plan(self, boundary: CycleBoundary) -> CyclePlan:
        pending = self._status.pending_cycle
        if pending is not None and pending.cycle_date != boundary.current:
            logger.warning(
                "Discarding unfinished cycle %s, now running cycle %s",
                pending.cycle_date.isoformat(), boundary.current.isoformat())
            self._status.pending_cycle = None
        plan = plan_cycle(self._config, self._status, boundary)
        if plan.resumed:
            logger.info("Resuming cycle %s (completed steps: %s)",
                        boundary.current.isoformat(),
                        ', '.join(self._status.pending_cycle.completed) or 'none')
        else:
            uat_target = self._status.get_branch(Slot.UAT)
            pro_target = self._status.get_branch(Slot.PRO)
            if pro_target and uat_target and pro_target != uat_target:
                logger.info("PRO moves from %s to %s", pro_target, plan.pro_source)
        return plan

    def _verify_branches(self, plan: CyclePlan) -> None:
        self._check_cancelled('verify')
        logger.info("=== Verifying Required Branches ===")
        required = list(dict.fromkeys([
            self._config.base_branch, self._config.uat_branch,
            self._config.pre_branch, self._config.pro_branch,
            plan.uat_source, plan.pro_source]))
        missing = [branch for branch in required if not self._backend.branch_exists(branch)]
        if missing:
            raise MissingBranchError(missing)
        logger.info("All required branches exist")

    def _record_pending(self, plan: CyclePlan) -> None:
        if plan.resumed:
            return
        self._status.pending_cycle = PendingCycle(
            cycle_date=plan.boundary.current,
            new_base_branch=plan.new_base_branch,
            uat_source=plan.uat_source,
            pro_source=plan.pro_source)
        self._persist()

    def _promote(self, target: str, source: str, no_ff: bool) -> None:
        "Critical merge of source into target followed by a push."
        result = self._backend.merge(target, source, no_ff=no_ff, critical=True)
        if result.failed:
            if result.conflict:
                self._recover(target)
            raise GitOperationFailed(f"Merging {source} into {target}", result.error or '')
        self._backend.push(target)

    def _recover(self, target: str) -> None:
        "Leaves the working tree out of the failed merge: abort, else hard reset."
        try:
            self._backend.merge_abort()
        except (GitOperationFailed, GitCommandError) as err:
            logger.warning("Merge abort failed (%s), resetting to %s", err, target)
            self._backend.reset_hard(target)

    @cycle_step('create-base')
    def _create_or_merge_base(self, plan: CyclePlan) -> None:
        base_branch = self._config.base_branch
        new_branch = plan.new_base_branch
        logger.info("=== Creating New Base Branch ===")
        plan.observed[Slot.BASE] = self._backend.latest_commit(base_branch)
        if self._backend.branch_exists(new_branch):
            logger.warning("Base branch %s already exists. Merging %s into it.",
                           new_branch, base_branch)
            self._promote(new_branch, base_branch, no_ff=False)
            return
        self._backend.create_branch(base_branch, new_branch)
        self._backend.empty_commit(f"[cycle] Open cycle {new_branch}")
        self._backend.push(new_branch)

    @cycle_step('merge-uat')
    def _merge_uat(self, plan: CyclePlan) -> None:
        logger.info("=== Updating UAT Branch ===")
        plan.observed[Slot.UAT] = self._backend.latest_commit(plan.uat_source)
        self._promote(self._config.uat_branch, plan.uat_source, no_ff=False)

    @cycle_step('merge-pre')
    def _merge_pre(self, plan: CyclePlan) -> None:
        logger.info("=== Updating PRE Branch ===")
        plan.observed[Slot.PRE] = self._backend.latest_commit(plan.uat_source)
        self._promote(self._config.pre_branch, plan.uat_source, no_ff=True)

    @cycle_step('merge-pro')
    def _merge_pro(self, plan: CyclePlan) -> None:
        logger.info("=== Updating PRO Branch ===")
        plan.observed[Slot.PRO] = self._backend.latest_commit(plan.pro_source)
        self._promote(self._config.pro_branch, plan.pro_source, no_ff=True)

    @cycle_step('track-branch')
    def _track_new_base(self, plan: CyclePlan) -> None:
        created_at = int(self._now().timestamp() * 1000)
        if self._status.track_branch(plan.new_base_branch, created_at):
            logger.info("Tracking %s for retention", plan.new_base_branch)

    @cycle_step('rotate')
    def _rotate(self, plan: CyclePlan) -> None:
        logger.info("=== Updating State ===")

        def fingerprint(slot: Slot, ref: str) -> Optional[CommitFingerprint]:
            return plan.observed.get(slot) or self._backend.latest_commit(ref)

        status = self._status
        status.set_target(Slot.BASE, plan.new_base_branch,
                          fingerprint(Slot.BASE, self._config.base_branch))
        status.set_target(Slot.UAT, plan.uat_source, fingerprint(Slot.UAT, plan.uat_source))
        status.set_target(Slot.PRE, plan.uat_source, fingerprint(Slot.PRE, plan.uat_source))
        status.set_target(Slot.PRO, plan.pro_source, fingerprint(Slot.PRO, plan.pro_source))
        status.ledger.last_cycle_date = plan.boundary.current
        status.ledger.ahead_cycle_date = plan.boundary.next
        status.ledger.ahead_commit = None
        status.pending_cycle = None

    # --------------------------------------------------------------- sweep

    def sync_pairs(self) -> List[SyncPair]:
        "Merges of the sweep, in order."
        config = self._config
        status = self._status
        pairs = [
            SyncPair('base', Slot.BASE, config.base_branch, status.get_branch(Slot.BASE)),
            SyncPair('uat', Slot.UAT, status.get_branch(Slot.UAT), config.uat_branch),
            SyncPair('pre', Slot.PRE, status.get_branch(Slot.PRE), config.pre_branch, no_ff=True),
            SyncPair('pro', Slot.PRO, status.get_branch(Slot.PRO), config.pro_branch, no_ff=True),
        ]
        ahead = status.ledger.ahead_cycle_date
        if ahead is not None:
            ahead_branch = format_branch_name(config.branch_prefix, ahead, config.date_format)
            if ahead_branch != status.get_branch(Slot.BASE) \
                    and self._backend.branch_exists(ahead_branch):
                pairs.append(SyncPair('ahead', None, config.base_branch, ahead_branch))
        return pairs

    def sweep(self) -> List[SlotReport]:
        """
        Re-syncs every pair whose source changed since its last sync.

        A failing pair is recovered and reported, the sweep goes on with the
        next one. The store is flushed after each pair.
        """
        reports = []
        for pair in self.sync_pairs():
            self._check_cancelled(f"sync-{pair.name}")
            report = self._sync_pair(pair)
            reports.append(report)
            self._persist()
        return reports

    def _sync_pair(self, pair: SyncPair) -> SlotReport:
        def report(status: SyncStatus, detail: str = '') -> SlotReport:
            return SlotReport(pair.name, pair.source, pair.destination, status, detail)

        if not pair.source or not pair.destination:
            logger.info("No %s target recorded, nothing to sync", pair.name)
            return report(SyncStatus.SKIPPED, 'no target recorded')
        if pair.source == pair.destination:
            return report(SyncStatus.SKIPPED, 'source is destination')

        current = self._backend.latest_commit(pair.source)
        if current is None:
            logger.error("Source branch %s not found", pair.source)
            return report(SyncStatus.FAILED, f"source {pair.source} not found")

        recorded = self._recorded_fingerprint(pair)
        if recorded is not None and recorded.hash == current.hash:
            logger.info("%s unchanged since last sync (%s)", pair.source, current.short_hash)
            return report(SyncStatus.UNCHANGED, current.short_hash)

        if not self._backend.branch_exists(pair.destination):
            logger.error("Destination branch %s not found", pair.destination)
            return report(SyncStatus.FAILED, f"destination {pair.destination} not found")

        merged = self._backend.merge(
            pair.destination, pair.source, no_ff=pair.no_ff, critical=False)
        if merged.failed:
            if merged.conflict:
                self._recover(pair.destination)
            return report(SyncStatus.FAILED, merged.error or 'merge failed')

        pushed = self._backend.push(pair.destination, critical=False)
        if pushed.failed:
            return report(SyncStatus.FAILED, pushed.error or 'push failed')

        self._record_fingerprint(pair, current)
        logger.info("Merged %s into %s and pushed", pair.source, pair.destination)
        return report(SyncStatus.MERGED, current.short_hash)

    def _recorded_fingerprint(self, pair: SyncPair) -> Optional[CommitFingerprint]:
        if pair.slot is None:
            return self._status.ledger.ahead_commit
        return self._status.get_fingerprint(pair.slot)

    def _record_fingerprint(self, pair: SyncPair, fingerprint: CommitFingerprint) -> None:
        if pair.slot is None:
            self._status.ledger.ahead_commit = fingerprint
        else:
            self._status.set_fingerprint(pair.slot, fingerprint)


def _outcome(reports: List[SlotReport]) -> Outcome:
    if any(report.status is SyncStatus.FAILED for report in reports):
        return Outcome.DEGRADED
    return Outcome.SUCCESS
