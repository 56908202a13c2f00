"""Tests for the in-memory answer store."""

import pytest

from quiz_engine.answers import UNANSWERED, AnswerStore
from quiz_engine.exceptions import SessionMisuseError, UnknownQuestionError


@pytest.fixture
def answer_store():
    return AnswerStore(["q1", "q2", "q3"])


class TestAnswerStore:
    def test_unanswered_question_returns_sentinel(self, answer_store):
        assert answer_store.get("q1") is UNANSWERED
        assert not UNANSWERED
        assert repr(UNANSWERED) == "UNANSWERED"

    def test_set_then_get(self, answer_store):
        answer_store.set("q2", "false")
        assert answer_store.get("q2") == "false"
        assert "q2" in answer_store
        assert answer_store.answered_count == 1

    def test_last_write_wins(self, answer_store):
        """Re-setting an answer overwrites it; there is still one answer per question."""
        answer_store.set("q1", "pop()")
        answer_store.set("q1", "shift()")
        answer_store.set("q1", "push()")

        assert answer_store.get("q1") == "push()"
        assert len(answer_store) == 1

    def test_no_option_validation_at_this_layer(self, answer_store):
        answer_store.set("q1", "not one of the options")
        assert answer_store.get("q1") == "not one of the options"

    def test_unknown_question_rejected(self, answer_store):
        with pytest.raises(UnknownQuestionError):
            answer_store.set("q99", "x")
        with pytest.raises(ValueError):
            answer_store.get("q99")

    def test_sealed_store_rejects_writes(self, answer_store):
        answer_store.set("q1", "push()")
        answer_store.seal()

        with pytest.raises(SessionMisuseError):
            answer_store.set("q1", "pop()")
        assert answer_store.get("q1") == "push()"

    def test_entries_cover_every_question_in_order(self, answer_store):
        answer_store.set("q3", "DOM")
        answer_store.set("q1", "push()")

        entries = answer_store.as_entries()

        assert [e.question_id for e in entries] == ["q1", "q2", "q3"]
        assert [e.answer for e in entries] == ["push()", None, "DOM"]
