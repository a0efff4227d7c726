"""
Tests for StatusStore.

Focused on testing:
- Loading both on-disk shapes (flat legacy and object)
- Saving back in the shape that was loaded
- Ledger, tracked branches and pending cycle records
- Malformed files
"""

import json
import pytest
from datetime import date

from branch_cycle.errors import ExitCode, StatusFileError
from branch_cycle.status_store import (
    CommitFingerprint, PendingCycle, Slot, StatusShape, StatusStore
)


@pytest.fixture
def object_status():
    """Status file content in the object shape."""
    return {
        'base': {'branch': 'release/2025-09-15',
                 'commit': {'hash': 'a' * 40, 'date': '2025-09-15T08:00:00+00:00',
                            'message': 'Add feature', 'author': 'Dev <dev@example.com>'}},
        'uat': {'branch': 'release/2025-09-01', 'commit': None},
        'pre': {'branch': 'release/2025-09-01', 'commit': None},
        'pro': {'branch': 'release/2025-08-18', 'commit': None},
        'lastCycleDate': '2025-09-15',
        'aheadCycleDate': '2025-09-29',
        'branches': [{'branch': 'release/2025-09-15', 'time': 1757923200000}],
    }


@pytest.fixture
def flat_status():
    """Status file content in the legacy flat shape."""
    return {
        'base': 'release/2025-09-15',
        'uat': 'release/2025-09-01',
        'pre': 'release/2025-09-01',
        'pro': 'release/2025-08-18',
        'lastCycleDate': '2025-09-15',
        'aheadCycleDate': '2025-09-29',
        'branches': [],
    }


def write_json(path, data):
    path.write_text(json.dumps(data, indent=2))
    return str(path)


class TestStatusStoreLoad:
    """Test StatusStore.load()."""

    def test_missing_file_gives_empty_store(self, tmp_path):
        store = StatusStore.load(str(tmp_path / 'status.json'))

        assert store.is_first_run
        assert store.shape is StatusShape.OBJECT
        assert store.get_branch(Slot.BASE) is None
        assert store.tracked_branches == []

    def test_no_path(self):
        assert StatusStore.load(None).is_first_run

    def test_object_shape(self, tmp_path, object_status):
        store = StatusStore.load(write_json(tmp_path / 'status.json', object_status))

        assert store.shape is StatusShape.OBJECT
        assert store.get_branch(Slot.BASE) == 'release/2025-09-15'
        assert store.get_branch(Slot.PRO) == 'release/2025-08-18'
        assert store.get_fingerprint(Slot.BASE).hash == 'a' * 40
        assert store.get_fingerprint(Slot.BASE).message == 'Add feature'
        assert store.get_fingerprint(Slot.UAT) is None
        assert store.ledger.last_cycle_date == date(2025, 9, 15)
        assert store.ledger.ahead_cycle_date == date(2025, 9, 29)
        assert store.is_tracked('release/2025-09-15')
        assert not store.is_first_run

    def test_flat_shape(self, tmp_path, flat_status):
        store = StatusStore.load(write_json(tmp_path / 'status.json', flat_status))

        assert store.shape is StatusShape.FLAT
        assert store.get_branch(Slot.UAT) == 'release/2025-09-01'
        assert all(store.get_fingerprint(slot) is None for slot in Slot)

    def test_next_cycle_date_alias(self, tmp_path, flat_status):
        flat_status.pop('aheadCycleDate')
        flat_status['nextCycleDate'] = '2025-09-29'

        store = StatusStore.load(write_json(tmp_path / 'status.json', flat_status))

        assert store.ledger.ahead_cycle_date == date(2025, 9, 29)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'status.json'
        path.write_text('{"base": ')

        with pytest.raises(StatusFileError) as exc_info:
            StatusStore.load(str(path))

        assert exc_info.value.exit_code == ExitCode.FILE_NOT_FOUND

    @pytest.mark.parametrize('data', [
        {'base': 42},
        {'lastCycleDate': '15/09/2025'},
        {'branches': 'release/2025-09-15'},
        {'branches': [{'branch': 'release/2025-09-15'}]},
        {'base': {'branch': 'x', 'commit': {'message': 'no hash'}}},
        {'pendingCycle': {'cycleDate': '2025-09-15'}},
        {'aheadCommit': 'abc123'},
    ])
    def test_malformed_content(self, tmp_path, data):
        with pytest.raises(StatusFileError):
            StatusStore.load(write_json(tmp_path / 'status.json', data))


class TestStatusStoreSave:
    """Test StatusStore.save() and round trips."""

    def test_flat_round_trip_stays_flat(self, tmp_path, flat_status):
        path = write_json(tmp_path / 'status.json', flat_status)
        store = StatusStore.load(path)
        store.set_fingerprint(Slot.BASE, CommitFingerprint(hash='b' * 40))

        store.save(path)
        saved = json.loads((tmp_path / 'status.json').read_text())

        assert saved['base'] == 'release/2025-09-15'
        assert saved['pro'] == 'release/2025-08-18'
        assert saved['lastCycleDate'] == '2025-09-15'
        assert StatusStore.load(path).shape is StatusShape.FLAT

    def test_flat_save_is_stable(self, tmp_path, flat_status):
        path = write_json(tmp_path / 'status.json', flat_status)

        StatusStore.load(path).save(path)
        first = (tmp_path / 'status.json').read_text()
        StatusStore.load(path).save(path)

        assert (tmp_path / 'status.json').read_text() == first

    def test_object_round_trip_keeps_fingerprints(self, tmp_path, object_status):
        path = write_json(tmp_path / 'status.json', object_status)

        StatusStore.load(path).save(path)
        saved = json.loads((tmp_path / 'status.json').read_text())

        assert saved['base'] == object_status['base']
        assert saved['uat'] == {'branch': 'release/2025-09-01', 'commit': None}
        assert saved['branches'] == object_status['branches']

    def test_new_store_uses_object_shape(self, tmp_path):
        path = str(tmp_path / 'status.json')
        store = StatusStore()
        store.set_target(Slot.BASE, 'release/2025-09-15', CommitFingerprint(hash='c' * 40))

        store.save(path)
        saved = json.loads((tmp_path / 'status.json').read_text())

        assert saved['base']['branch'] == 'release/2025-09-15'
        assert saved['base']['commit']['hash'] == 'c' * 40
        assert saved['pro'] == {'branch': None, 'commit': None}

    def test_ahead_commit_kept_in_object_shape(self, tmp_path, object_status):
        object_status['aheadCommit'] = {'hash': 'd' * 40, 'message': 'Add feature'}
        path = write_json(tmp_path / 'status.json', object_status)

        store = StatusStore.load(path)
        store.save(path)
        saved = json.loads((tmp_path / 'status.json').read_text())

        assert store.ledger.ahead_commit.hash == 'd' * 40
        assert saved['aheadCommit']['hash'] == 'd' * 40
        assert saved['aheadCommit']['message'] == 'Add feature'

    def test_ahead_commit_dropped_in_flat_shape(self, tmp_path, flat_status):
        path = write_json(tmp_path / 'status.json', flat_status)
        store = StatusStore.load(path)
        store.ledger.ahead_commit = CommitFingerprint(hash='d' * 40)

        store.save(path)

        assert 'aheadCommit' not in json.loads((tmp_path / 'status.json').read_text())

    def test_unknown_keys_preserved(self, tmp_path, object_status):
        object_status['owner'] = 'platform-team'
        path = write_json(tmp_path / 'status.json', object_status)

        StatusStore.load(path).save(path)

        assert json.loads((tmp_path / 'status.json').read_text())['owner'] == 'platform-team'

    def test_no_temporary_file_left(self, tmp_path):
        path = tmp_path / 'status.json'

        StatusStore().save(str(path))

        assert path.exists()
        assert not (tmp_path / 'status.json.tmp').exists()

    def test_save_without_path_is_noop(self, tmp_path):
        StatusStore().save(None)

        assert list(tmp_path.iterdir()) == []

    def test_pending_cycle_round_trip(self, tmp_path):
        path = str(tmp_path / 'status.json')
        store = StatusStore()
        store.pending_cycle = PendingCycle(
            cycle_date=date(2025, 9, 15),
            new_base_branch='release/2025-09-15',
            uat_source='release/2025-09-01',
            pro_source='release/2025-08-18',
            completed=['create-base'])

        store.save(path)
        pending = StatusStore.load(path).pending_cycle

        assert pending == store.pending_cycle
        assert pending.is_done('create-base')
        assert not pending.is_done('merge-uat')


class TestStatusStoreMutations:
    """Test slot and tracked branch mutations."""

    def test_set_target_keeps_fingerprint_when_none_given(self):
        store = StatusStore()
        fingerprint = CommitFingerprint(hash='d' * 40)
        store.set_target(Slot.UAT, 'release/2025-09-01', fingerprint)

        store.set_target(Slot.UAT, 'release/2025-09-15')

        assert store.get_branch(Slot.UAT) == 'release/2025-09-15'
        assert store.get_fingerprint(Slot.UAT) == fingerprint

    def test_current_targets(self):
        store = StatusStore()
        store.set_target(Slot.UAT, 'release/2025-09-01')
        store.set_target(Slot.PRE, 'release/2025-09-01')

        assert store.current_targets() == {'release/2025-09-01'}

    def test_track_branch_once(self):
        store = StatusStore()

        assert store.track_branch('release/2025-09-15', 1) is True
        assert store.track_branch('release/2025-09-15', 2) is False
        assert len(store.tracked_branches) == 1
        assert store.tracked_branches[0].created_at == 1

    def test_untrack_branch(self):
        store = StatusStore()
        store.track_branch('release/2025-09-01', 1)
        store.track_branch('release/2025-09-15', 2)

        store.untrack_branch('release/2025-09-01')

        assert [tracked.name for tracked in store.tracked_branches] == ['release/2025-09-15']

    def test_pending_mark_done_once(self):
        pending = PendingCycle(date(2025, 9, 15), 'b', 'u', 'p')

        pending.mark_done('merge-uat')
        pending.mark_done('merge-uat')

        assert pending.completed == ['merge-uat']
