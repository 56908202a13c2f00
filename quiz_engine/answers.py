"""In-memory store of the learner's current answers."""

from typing import Dict, Iterable, List, Optional, Union

from quiz_engine.exceptions import SessionMisuseError, UnknownQuestionError
from quiz_engine.models import AnswerEntry


class _Unanswered:
    """Sentinel for a question with no answer yet."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNANSWERED"

    def __bool__(self) -> bool:
        return False


UNANSWERED = _Unanswered()


class AnswerStore:
    """At most one answer per question; re-setting overwrites.

    Only question identifiers known at construction are accepted. Once sealed
    the store rejects every write.
    """

    def __init__(self, question_ids: Iterable[str]):
        self._order: List[str] = list(question_ids)
        self._known = set(self._order)
        self._answers: Dict[str, str] = {}
        self._sealed = False

    def _check_known(self, question_id: str) -> None:
        if question_id not in self._known:
            raise UnknownQuestionError(f"Unknown question id '{question_id}'")

    def set(self, question_id: str, value: str) -> None:
        if self._sealed:
            raise SessionMisuseError("answers can no longer be changed for this session")
        self._check_known(question_id)
        self._answers[question_id] = "" if value is None else str(value)

    def get(self, question_id: str) -> Union[str, _Unanswered]:
        self._check_known(question_id)
        return self._answers.get(question_id, UNANSWERED)

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def answered_count(self) -> int:
        return len(self._answers)

    def as_entries(self) -> List[AnswerEntry]:
        """Every question, in question order, with its answer or None."""
        return [AnswerEntry(question_id=qid, answer=self._answers.get(qid)) for qid in self._order]

    def snapshot(self) -> Dict[str, Optional[str]]:
        return {qid: self._answers.get(qid) for qid in self._order}

    def __contains__(self, question_id: str) -> bool:
        return question_id in self._answers

    def __len__(self) -> int:
        return len(self._answers)
