"""
StatusStore module for branch-cycle

Persisted record of the branch each environment tracks, the last commit
observed on it, the cycle ledger and the date branches created so far.

Two on-disk shapes are accepted:

- object shape (current)::

    {"base": {"branch": "2025-09-15", "commit": {"hash": "...", ...}}, ...}

- flat shape (legacy)::

    {"base": "2025-09-15", ...}

The in-memory model is always the object form. The shape that was loaded is
remembered and reproduced on save; commit fingerprints are dropped when
writing the flat shape since it has no field for them, and so is the
ledger's ``aheadCommit``.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from branch_cycle.errors import StatusFileError

logger = logging.getLogger(__name__)


class Slot(Enum):
    """Environment slots, in promotion order."""
    BASE = 'base'
    UAT = 'uat'
    PRE = 'pre'
    PRO = 'pro'


class StatusShape(Enum):
    """On-disk shape of the status file."""
    FLAT = 'flat'
    OBJECT = 'object'


@dataclass(frozen=True)
class CommitFingerprint:
    """Identity of the last commit observed on a ref."""
    hash: str
    date: str = ''
    message: str = ''
    author: str = ''

    @classmethod
    def from_dict(cls, data: dict) -> 'CommitFingerprint':
        if not isinstance(data, dict) or not data.get('hash'):
            raise StatusFileError(f"Invalid commit record: {data!r}")
        return cls(
            hash=str(data['hash']),
            date=str(data.get('date', '')),
            message=str(data.get('message', '')),
            author=str(data.get('author', '')),
        )

    def to_dict(self) -> dict:
        return {
            'hash': self.hash,
            'date': self.date,
            'message': self.message,
            'author': self.author,
        }

    @property
    def short_hash(self) -> str:
        return self.hash[:8]


@dataclass
class EnvironmentSlot:
    target_branch: Optional[str] = None
    last_commit: Optional[CommitFingerprint] = None


@dataclass
class CycleLedger:
    """
    Dates of the last executed full cycle and of the following boundary.

    ahead_commit is the last commit of the base branch merged into the branch
    named after ahead_cycle_date. It has no slot of its own.
    """
    last_cycle_date: Optional[date] = None
    ahead_cycle_date: Optional[date] = None
    ahead_commit: Optional[CommitFingerprint] = None


@dataclass(frozen=True)
class TrackedBranch:
    """A date branch created by a full cycle. created_at is in epoch milliseconds."""
    name: str
    created_at: int


@dataclass
class PendingCycle:
    """
    Progress of a full cycle that has started but not rotated the slots yet.

    Lets a re-run on the same boundary reuse the sources computed by the
    interrupted run and skip the steps it already completed.
    """
    cycle_date: date
    new_base_branch: str
    uat_source: str
    pro_source: str
    completed: List[str] = field(default_factory=list)

    def is_done(self, step: str) -> bool:
        return step in self.completed

    def mark_done(self, step: str) -> None:
        if step not in self.completed:
            self.completed.append(step)

    @classmethod
    def from_dict(cls, data: dict) -> 'PendingCycle':
        try:
            return cls(
                cycle_date=_parse_iso(data['cycleDate'], 'pendingCycle.cycleDate'),
                new_base_branch=str(data['newBaseBranch']),
                uat_source=str(data['uatSource']),
                pro_source=str(data['proSource']),
                completed=[str(step) for step in data.get('completed', [])],
            )
        except (KeyError, TypeError) as err:
            raise StatusFileError(f"Invalid pendingCycle record: {data!r}") from err

    def to_dict(self) -> dict:
        return {
            'cycleDate': self.cycle_date.isoformat(),
            'newBaseBranch': self.new_base_branch,
            'uatSource': self.uat_source,
            'proSource': self.pro_source,
            'completed': list(self.completed),
        }


def _parse_iso(value, key: str) -> Optional[date]:
    if value in (None, ''):
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError as err:
        raise StatusFileError(f"Invalid date for {key}: {value!r}") from err


_KNOWN_KEYS = {slot.value for slot in Slot} | {
    'lastCycleDate', 'aheadCycleDate', 'nextCycleDate', 'aheadCommit',
    'branches', 'pendingCycle'}


class StatusStore:
    """
    Aggregate of the four environment slots, the cycle ledger, the tracked
    date branches and the pending cycle record.

    Examples:
        store = StatusStore.load('status.json')
        store.set_target(Slot.BASE, 'release/2025-09-15')
        store.save('status.json')
    """

    def __init__(self, shape: StatusShape = StatusShape.OBJECT):
        self.shape = shape
        self.slots: Dict[Slot, EnvironmentSlot] = {slot: EnvironmentSlot() for slot in Slot}
        self.ledger = CycleLedger()
        self.tracked_branches: List[TrackedBranch] = []
        self.pending_cycle: Optional[PendingCycle] = None
        # Top-level keys this module does not read, written back untouched.
        self._extra: dict = {}

    def __repr__(self):
        targets = ', '.join(f"{slot.value}={self.get_branch(slot)}" for slot in Slot)
        return f"<StatusStore {self.shape.value} {targets}>"

    @property
    def is_first_run(self) -> bool:
        "True when no slot has a target and no cycle was ever executed."
        return self.ledger.last_cycle_date is None and \
            all(slot.target_branch is None for slot in self.slots.values())

    def get_branch(self, slot: Slot) -> Optional[str]:
        return self.slots[slot].target_branch

    def get_fingerprint(self, slot: Slot) -> Optional[CommitFingerprint]:
        return self.slots[slot].last_commit

    def set_target(self, slot: Slot, branch_name: str,
                   fingerprint: Optional[CommitFingerprint] = None) -> None:
        "Sets the slot target. The recorded fingerprint is kept when none is given."
        entry = self.slots[slot]
        entry.target_branch = branch_name
        if fingerprint is not None:
            entry.last_commit = fingerprint

    def set_fingerprint(self, slot: Slot, fingerprint: Optional[CommitFingerprint]) -> None:
        self.slots[slot].last_commit = fingerprint

    def current_targets(self) -> set:
        "Branch names currently referenced by any slot."
        return {entry.target_branch for entry in self.slots.values() if entry.target_branch}

    def is_tracked(self, name: str) -> bool:
        return any(tracked.name == name for tracked in self.tracked_branches)

    def track_branch(self, name: str, created_at: int) -> bool:
        "Appends a tracked branch. Returns False if it was already tracked."
        if self.is_tracked(name):
            return False
        self.tracked_branches.append(TrackedBranch(name=name, created_at=created_at))
        return True

    def untrack_branch(self, name: str) -> None:
        self.tracked_branches = [
            tracked for tracked in self.tracked_branches if tracked.name != name]

    # ------------------------------------------------------------------ codec

    @classmethod
    def from_dict(cls, data: dict) -> 'StatusStore':
        """
        Normalizes either on-disk shape into a StatusStore.

        Raises:
            StatusFileError: If a field has an unexpected type
        """
        if not isinstance(data, dict):
            raise StatusFileError("Status file must contain a JSON object")

        raw_slots = {slot: data.get(slot.value) for slot in Slot}
        is_flat = any(isinstance(value, str) for value in raw_slots.values())
        store = cls(StatusShape.FLAT if is_flat else StatusShape.OBJECT)

        for slot, value in raw_slots.items():
            if value is None:
                continue
            if isinstance(value, str):
                store.slots[slot] = EnvironmentSlot(target_branch=value)
            elif isinstance(value, dict):
                commit = value.get('commit')
                store.slots[slot] = EnvironmentSlot(
                    target_branch=value.get('branch'),
                    last_commit=CommitFingerprint.from_dict(commit) if commit else None)
            else:
                raise StatusFileError(f"Invalid value for '{slot.value}': {value!r}")

        store.ledger.last_cycle_date = _parse_iso(data.get('lastCycleDate'), 'lastCycleDate')
        store.ledger.ahead_cycle_date = _parse_iso(
            data.get('aheadCycleDate', data.get('nextCycleDate')), 'aheadCycleDate')
        if data.get('aheadCommit'):
            store.ledger.ahead_commit = CommitFingerprint.from_dict(data['aheadCommit'])

        branches = data.get('branches') or []
        if not isinstance(branches, list):
            raise StatusFileError(f"Invalid value for 'branches': {branches!r}")
        for item in branches:
            try:
                store.track_branch(str(item['branch']), int(item['time']))
            except (KeyError, TypeError, ValueError) as err:
                raise StatusFileError(f"Invalid tracked branch: {item!r}") from err

        if data.get('pendingCycle'):
            store.pending_cycle = PendingCycle.from_dict(data['pendingCycle'])

        store._extra = {key: value for key, value in data.items() if key not in _KNOWN_KEYS}
        return store

    def to_dict(self) -> dict:
        "Serializes in the remembered shape."
        data = dict(self._extra)
        for slot in Slot:
            entry = self.slots[slot]
            if self.shape is StatusShape.FLAT:
                if entry.target_branch is not None:
                    data[slot.value] = entry.target_branch
            else:
                data[slot.value] = {
                    'branch': entry.target_branch,
                    'commit': entry.last_commit.to_dict() if entry.last_commit else None,
                }
        if self.ledger.last_cycle_date:
            data['lastCycleDate'] = self.ledger.last_cycle_date.isoformat()
        if self.ledger.ahead_cycle_date:
            data['aheadCycleDate'] = self.ledger.ahead_cycle_date.isoformat()
        if self.ledger.ahead_commit and self.shape is StatusShape.OBJECT:
            data['aheadCommit'] = self.ledger.ahead_commit.to_dict()
        data['branches'] = [
            {'branch': tracked.name, 'time': tracked.created_at}
            for tracked in self.tracked_branches]
        if self.pending_cycle is not None:
            data['pendingCycle'] = self.pending_cycle.to_dict()
        return data

    @classmethod
    def load(cls, path: Optional[str]) -> 'StatusStore':
        """
        Loads the status file. A missing file gives an empty store.

        Raises:
            StatusFileError: If the file cannot be read or parsed
        """
        if not path or not os.path.exists(path):
            if path:
                logger.info("Status file not found at %s, creating new state", path)
            return cls()
        try:
            with open(path, encoding='utf-8') as status_file:
                data = json.load(status_file)
        except (OSError, ValueError) as err:
            raise StatusFileError(f"Failed to read status file: {err}") from err
        store = cls.from_dict(data)
        logger.debug("Loaded %s status from %s", store.shape.value, path)
        return store

    def save(self, path: Optional[str]) -> None:
        """
        Writes the status file, pretty-printed.

        The file is replaced atomically so that a crash never leaves a
        truncated status behind.
        """
        if not path:
            return
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as status_file:
                json.dump(self.to_dict(), status_file, indent=2)
                status_file.write('\n')
            os.replace(tmp_path, path)
        except OSError as err:
            raise StatusFileError(f"Failed to write status file: {err}") from err
        logger.debug("Updated state file: %s", path)
