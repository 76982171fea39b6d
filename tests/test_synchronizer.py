import logging
import time

import pytest

from speaking.errors import StoreUnavailable
from speaking.models import Turn, TurnRole
from speaking.synchronizer import TranscriptSynchronizer


def make_turns(n):
    roles = (TurnRole.RESPONDENT, TurnRole.EXAMINER)
    return [Turn(roles[i % 2], f"line {i}", i) for i in range(n)]


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def session_id(store):
    return store.create("owner-1", topic="Hometown")


def test_sync_overwrites_whole_transcript(store, synchronizer, session_id):
    synchronizer.sync(session_id, make_turns(2))
    synchronizer.sync(session_id, make_turns(4))
    assert store.read_transcript(session_id) == make_turns(4)


def test_checkpoint_writes_in_background(store, synchronizer, session_id):
    synchronizer.checkpoint(session_id, make_turns(2))
    assert wait_for(lambda: len(store.read_transcript(session_id)) == 2)


def test_checkpoint_failure_is_logged_not_raised(store, synchronizer, session_id, caplog):
    store.fail_overwrite = True
    with caplog.at_level(logging.WARNING, logger="speaking.synchronizer"):
        synchronizer.checkpoint(session_id, make_turns(2))
        assert wait_for(lambda: "checkpoint for session" in caplog.text)
    assert store.read_transcript(session_id) == []


def test_flush_failure_propagates(store, synchronizer, session_id):
    store.fail_overwrite = True
    with pytest.raises(StoreUnavailable):
        synchronizer.flush(session_id, make_turns(2))


def test_flush_is_authoritative_after_checkpoints(store, synchronizer, session_id):
    for n in range(1, 6):
        synchronizer.checkpoint(session_id, make_turns(n))
    synchronizer.flush(session_id, make_turns(6))
    assert store.read_transcript(session_id) == make_turns(6)


def test_checkpoint_after_flush_is_ignored(store, synchronizer, session_id):
    synchronizer.flush(session_id, make_turns(4))
    synchronizer.checkpoint(session_id, make_turns(2))
    time.sleep(0.05)
    assert store.read_transcript(session_id) == make_turns(4)


def test_shorter_snapshot_never_replaces_longer(store, synchronizer, session_id):
    synchronizer.sync(session_id, make_turns(4))
    synchronizer.checkpoint(session_id, make_turns(2))
    time.sleep(0.05)
    assert store.read_transcript(session_id) == make_turns(4)


def test_checkpoints_inside_debounce_window_coalesce(store, session_id):
    sync = TranscriptSynchronizer(store, debounce_seconds=30.0)
    try:
        sync.checkpoint(session_id, make_turns(2))
        assert wait_for(lambda: store.overwrites == 1)

        sync.checkpoint(session_id, make_turns(4))
        sync.checkpoint(session_id, make_turns(6))
        time.sleep(0.1)
        assert store.overwrites == 1

        started = time.monotonic()
        sync.flush(session_id, make_turns(8))
        assert time.monotonic() - started < 5
        assert store.overwrites == 2
        assert store.read_transcript(session_id) == make_turns(8)
    finally:
        sync.shutdown(wait=True)


def test_debounced_snapshot_is_written_when_the_window_closes(store, session_id):
    sync = TranscriptSynchronizer(store, debounce_seconds=0.2)
    try:
        sync.checkpoint(session_id, make_turns(2))
        assert wait_for(lambda: store.overwrites == 1)
        sync.checkpoint(session_id, make_turns(4))
        assert len(store.read_transcript(session_id)) == 2
        assert wait_for(lambda: len(store.read_transcript(session_id)) == 4)
        assert store.overwrites == 2
    finally:
        sync.shutdown(wait=True)


def test_debounce_window_does_not_hold_a_worker(store, session_id):
    other = store.create("owner-2", topic="Travel")
    sync = TranscriptSynchronizer(store, debounce_seconds=30.0, max_workers=1)
    try:
        sync.checkpoint(session_id, make_turns(2))
        assert wait_for(lambda: store.overwrites == 1)
        # the first session is now waiting out its window
        sync.checkpoint(session_id, make_turns(4))

        sync.checkpoint(other, make_turns(2))
        assert wait_for(lambda: len(store.read_transcript(other)) == 2, timeout=1.0)
        assert len(store.read_transcript(session_id)) == 2
    finally:
        sync.shutdown(wait=False)


def test_shutdown_writes_pending_snapshots(store, session_id):
    sync = TranscriptSynchronizer(store, debounce_seconds=30.0)
    sync.checkpoint(session_id, make_turns(2))
    assert wait_for(lambda: store.overwrites == 1)
    sync.checkpoint(session_id, make_turns(4))

    sync.shutdown(wait=True)
    assert store.read_transcript(session_id) == make_turns(4)
