import threading

from speaking.finalizer import Finalizer
from speaking.janitor import RecoverySweeper
from speaking.models import SessionStatus, Turn, TurnRole

from conftest import rejected


def open_session(store, owner="owner-1", answer="I like trains."):
    sid = store.create(owner, topic="Travel")
    store.overwrite_transcript(sid, [Turn(TurnRole.RESPONDENT, answer, 0)])
    return sid


def test_orphans_past_grace_are_finalized(store, sweeper, clock, summarizer):
    old = [open_session(store), open_session(store)]
    clock.advance(300)
    fresh = open_session(store)

    assert sweeper.sweep("owner-1") == 2
    for sid in old:
        assert store.get(sid).status == SessionStatus.FINALIZED
    assert store.get(fresh).status == SessionStatus.OPEN
    assert summarizer.calls == 2


def test_other_owners_are_untouched(store, sweeper, clock):
    mine = open_session(store, owner="owner-1")
    theirs = open_session(store, owner="owner-2")
    clock.advance(300)

    assert sweeper.sweep("owner-1") == 1
    assert store.get(mine).status == SessionStatus.FINALIZED
    assert store.get(theirs).status == SessionStatus.OPEN


def test_second_sweep_finds_nothing(store, sweeper, clock, summarizer):
    open_session(store)
    clock.advance(300)
    assert sweeper.sweep("owner-1") == 1
    assert sweeper.sweep("owner-1") == 0
    assert summarizer.calls == 1


def test_excluded_sessions_are_skipped(store, sweeper, clock):
    live = open_session(store)
    orphan = open_session(store)
    clock.advance(300)

    assert sweeper.sweep("owner-1", exclude=[live]) == 1
    assert store.get(live).status == SessionStatus.OPEN
    assert store.get(orphan).status == SessionStatus.FINALIZED


def test_failed_finalization_stays_open_for_next_sweep(store, sweeper, clock, summarizer):
    sid = open_session(store)
    clock.advance(300)
    summarizer.error = rejected("summarization")

    assert sweeper.sweep("owner-1") == 0
    assert store.get(sid).status == SessionStatus.OPEN

    summarizer.error = None
    assert sweeper.sweep("owner-1") == 1
    assert store.get(sid).status == SessionStatus.FINALIZED


def test_sequential_sweep_with_parallelism_one(store, finalizer, clock):
    sweeper = RecoverySweeper(store, finalizer, grace_seconds=60, parallelism=1, clock=clock)
    ids = [open_session(store) for _ in range(3)]
    clock.advance(120)
    assert sweeper.sweep("owner-1") == 3
    assert all(store.get(sid).status == SessionStatus.FINALIZED for sid in ids)


def test_concurrent_sweeps_finalize_each_session_once(store, clock, summarizer, analyzer):
    ids = [open_session(store, answer=f"answer {i}") for i in range(5)]
    clock.advance(300)

    finalizers = [Finalizer(store, summarizer, analyzer, timeout=5.0) for _ in range(2)]
    sweepers = [RecoverySweeper(store, f, grace_seconds=120, clock=clock) for f in finalizers]
    counts = []
    barrier = threading.Barrier(2)

    def run(sweeper):
        barrier.wait()
        counts.append(sweeper.sweep("owner-1"))

    threads = [threading.Thread(target=run, args=(s,)) for s in sweepers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    for f in finalizers:
        f.shutdown(wait=True)

    assert all(store.get(sid).status == SessionStatus.FINALIZED for sid in ids)
    assert summarizer.calls == 5
    assert sum(counts) == 5
