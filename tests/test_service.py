import pytest

from speaking.errors import (
    CollaboratorRejected,
    InvalidInput,
    SessionNotActive,
    StoreUnavailable,
    UnknownTopic,
)
from speaking.finalizer import FinalizeOutcome
from speaking.models import SessionStatus, TurnRole, TurnState
from speaking.services.pricing import estimate_tokens_from_text

from conftest import rejected


class TestHappyPath:
    def test_hometown_session_runs_to_summary(self, make_service, store, summarizer):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        assert handle.prompt_count == 3
        assert handle.first_prompt.key == "hometown_where"

        answers = ["Porto, in the north.", "It got busier.", "Yes, I would."]
        results = [service.submit_turn(handle.session_id, a) for a in answers]

        assert not results[0].finished
        last = results[-1]
        assert last.finished
        assert last.ended is not None
        assert last.end_error is None

        outcome = last.ended.wait(5)
        assert outcome.outcome == FinalizeOutcome.FINALIZED

        session = store.get(handle.session_id)
        assert session.status == SessionStatus.FINALIZED
        assert len(session.transcript) == 6
        assert [t.role for t in session.transcript] == [
            TurnRole.RESPONDENT,
            TurnRole.EXAMINER,
        ] * 3
        assert session.analysis_report is not None
        assert summarizer.seen == [session.transcript]

    def test_end_session_after_finish_returns_same_result(self, make_service):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        for answer in ("a", "b", "c"):
            last = service.submit_turn(handle.session_id, answer)
        assert service.end_session(handle.session_id) is last.ended

    @pytest.mark.parametrize("turns", [0, 1, 2])
    def test_early_end_finalizes_exactly_what_was_said(
        self, make_service, store, summarizer, turns
    ):
        service = make_service()
        handle = service.start_session("owner-1", "Work or Study")
        for i in range(turns):
            service.submit_turn(handle.session_id, f"answer {i}")

        ended = service.end_session(handle.session_id)
        assert ended.wait(5).outcome == FinalizeOutcome.FINALIZED
        assert len(ended.transcript) == 2 * turns
        assert store.read_transcript(handle.session_id) == ended.transcript
        assert summarizer.seen == [ended.transcript]

    def test_end_session_twice_is_idempotent(self, make_service, summarizer):
        service = make_service()
        handle = service.start_session("owner-1", "Travel")
        service.submit_turn(handle.session_id, "Lisbon last spring.")

        first = service.end_session(handle.session_id)
        second = service.end_session(handle.session_id)
        assert first is second
        first.wait(5)
        assert summarizer.calls == 1

    def test_ended_session_takes_no_more_turns(self, make_service):
        service = make_service()
        handle = service.start_session("owner-1", "Travel")
        service.end_session(handle.session_id).wait(5)
        with pytest.raises(SessionNotActive):
            service.submit_turn(handle.session_id, "one more")

    def test_two_owners_run_side_by_side(self, make_service, store):
        service = make_service()
        a = service.start_session("owner-a", "Hometown")
        b = service.start_session("owner-b", "Technology")
        service.submit_turn(a.session_id, "answer a")
        service.submit_turn(b.session_id, "answer b")

        service.end_session(a.session_id).wait(5)
        assert store.get(a.session_id).status == SessionStatus.FINALIZED
        assert store.get(b.session_id).status == SessionStatus.OPEN
        assert service.get_controller(b.session_id).turn_index == 1

    def test_blank_answer_keeps_the_session_usable(self, make_service, store):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        with pytest.raises(InvalidInput):
            service.submit_turn(handle.session_id, "   ")

        assert store.get(handle.session_id).status == SessionStatus.OPEN
        result = service.submit_turn(handle.session_id, "Porto, in the north.")
        assert result.turn_index == 1
        assert result.respondent_text == "Porto, in the north."

    def test_end_result_reports_token_usage(self, make_service):
        service = make_service()
        handle = service.start_session("owner-1", "Travel")
        turn = service.submit_turn(handle.session_id, "Lisbon last spring.")

        ended = service.end_session(handle.session_id)
        assert ended.usage == {"tokens_in": turn.tokens_in, "tokens_out": turn.tokens_out}
        assert ended.usage["tokens_in"] == estimate_tokens_from_text("Lisbon last spring.")
        ended.wait(5)

    def test_ended_results_are_bounded(self, make_service):
        service = make_service(ended_cache_size=2)
        ids = []
        for topic in ("Hometown", "Travel", "Technology"):
            sid = service.start_session("owner-1", topic).session_id
            last = service.end_session(sid)
            last.wait(5)
            ids.append(sid)

        assert service.end_session(ids[-1]) is last
        with pytest.raises(SessionNotActive):
            service.end_session(ids[0])


class TestRecovery:
    def test_crashed_session_is_finalized_at_next_login(
        self, make_service, store, clock, summarizer
    ):
        crashed = make_service()
        handle = crashed.start_session("owner-1", "Hometown")
        crashed.submit_turn(handle.session_id, "Porto, in the north.")
        # the process dies here: pending checkpoints drain, nothing else runs
        crashed.synchronizer.shutdown(wait=True)
        assert summarizer.calls == 0

        clock.advance(600)
        restarted = make_service()
        summary = restarted.on_login("owner-1")

        session = store.get(handle.session_id)
        assert session.status == SessionStatus.FINALIZED
        assert summary == session.memory_summary
        assert len(session.transcript) == 2
        assert summarizer.calls == 1

    def test_start_session_sweeps_before_creating(self, make_service, store, clock):
        crashed = make_service()
        orphan = crashed.start_session("owner-1", "Travel").session_id
        crashed.synchronizer.shutdown(wait=True)

        clock.advance(600)
        restarted = make_service()
        fresh = restarted.start_session("owner-1", "Hometown").session_id

        assert store.get(orphan).status == SessionStatus.FINALIZED
        assert store.get(fresh).status == SessionStatus.OPEN

    def test_live_session_is_not_swept(self, make_service, store, clock):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        clock.advance(600)
        service.submit_turn(handle.session_id, "still talking")

        service.on_login("owner-1")
        assert store.get(handle.session_id).status == SessionStatus.OPEN
        service.submit_turn(handle.session_id, "and talking")

    def test_errored_session_is_swept_after_grace(
        self, make_service, store, clock, tts, summarizer
    ):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        service.submit_turn(handle.session_id, "Porto, in the north.")
        tts.error = rejected("tts")
        with pytest.raises(CollaboratorRejected):
            service.submit_turn(handle.session_id, "It got busier.")
        assert service.get_controller(handle.session_id).state == TurnState.ERROR

        clock.advance(3600)
        service.on_login("owner-1")

        session = store.get(handle.session_id)
        assert session.status == SessionStatus.FINALIZED
        # the in-memory turns of the failed turn were flushed before the sweep
        assert len(session.transcript) == 4
        assert summarizer.seen == [session.transcript]
        with pytest.raises(SessionNotActive):
            service.get_controller(handle.session_id)

    def test_errored_session_can_still_be_ended_inside_grace(
        self, make_service, store, clock, questions
    ):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        questions.error = rejected("questions")
        with pytest.raises(CollaboratorRejected):
            service.submit_turn(handle.session_id, "Porto.")

        clock.advance(60)
        service.on_login("owner-1")
        assert store.get(handle.session_id).status == SessionStatus.OPEN

        ended = service.end_session(handle.session_id)
        assert ended.wait(5).outcome == FinalizeOutcome.FINALIZED
        assert len(ended.transcript) == 1

    def test_abandoned_session_is_swept_on_next_login(self, make_service, store, clock):
        service = make_service()
        abandoned = service.start_session("owner-1", "Hometown").session_id
        service.submit_turn(abandoned, "Porto, in the north.")

        clock.advance(86400)
        service.on_login("owner-1")
        fresh = service.start_session("owner-1", "Travel").session_id

        assert store.get(abandoned).status == SessionStatus.FINALIZED
        assert len(store.read_transcript(abandoned)) == 2
        assert store.get(fresh).status == SessionStatus.OPEN
        with pytest.raises(SessionNotActive):
            service.submit_turn(abandoned, "back again")

    def test_login_without_history_returns_none(self, make_service):
        assert make_service().on_login("newcomer") is None

    def test_login_returns_latest_summary(self, make_service, clock):
        service = make_service()
        first = service.start_session("owner-1", "Travel")
        service.end_session(first.session_id).wait(5)
        clock.advance(60)
        second = service.start_session("owner-1", "Hometown")
        service.submit_turn(second.session_id, "Porto.")
        latest = service.end_session(second.session_id).wait(5)

        assert service.on_login("owner-1") == latest.summary


class TestFailures:
    def test_failed_final_sync_does_not_finalize(self, make_service, store, summarizer):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        service.submit_turn(handle.session_id, "Porto, in the north.")

        store.fail_overwrite = True
        with pytest.raises(StoreUnavailable):
            service.end_session(handle.session_id)

        assert summarizer.calls == 0
        assert store.get(handle.session_id).status == SessionStatus.OPEN

    def test_end_can_be_retried_after_sync_failure(self, make_service, store):
        service = make_service()
        handle = service.start_session("owner-1", "Hometown")
        service.submit_turn(handle.session_id, "Porto.")

        store.fail_overwrite = True
        with pytest.raises(StoreUnavailable):
            service.end_session(handle.session_id)

        store.fail_overwrite = False
        ended = service.end_session(handle.session_id)
        assert ended.wait(5).outcome == FinalizeOutcome.FINALIZED
        assert len(store.read_transcript(handle.session_id)) == 2

    def test_unknown_topic(self, make_service):
        with pytest.raises(UnknownTopic):
            make_service().start_session("owner-1", "Knitting")

    def test_unknown_session(self, make_service):
        with pytest.raises(SessionNotActive):
            make_service().submit_turn("nope", "hello")
