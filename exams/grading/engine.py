"""
Grading engine.

Deterministic scoring of one (question, response) pair. Auto-gradable types
get a score in ``[0, max_score]``; free-text types are always handed to a
human (``requires_manual_review``) and never scored heuristically.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple

from exams.exceptions import MalformedAnswerError
from .base import GradingResult, QuestionDefinition, QuestionGrader
from .codec import get_format
from .types import QuestionType, MANUAL_REVIEW_TYPES, is_auto_gradable

logger = logging.getLogger(__name__)


class MultipleChoiceGrader(QuestionGrader):
    """All-or-nothing: the selected letters must equal the key exactly."""

    def count(self, definition, response) -> Tuple[int, int]:
        key = definition.key
        expected = key if isinstance(key, frozenset) else frozenset([key])
        selected = response if isinstance(response, frozenset) else frozenset([response])
        return (1 if selected == expected else 0), 1

    def feedback(self, correct, total):
        return "Correct!" if correct else "Incorrect."


class FillBlankGrader(QuestionGrader):

    def count(self, definition, response):
        key = definition.key
        correct = 0
        for position, expected in enumerate(key):
            given = response[position] if position < len(response) else ''
            if given.strip().lower() == expected.strip().lower():
                correct += 1
        return correct, len(key)

    def feedback(self, correct, total):
        return f"{correct} of {total} blanks correct."


class MatchingGrader(QuestionGrader):

    def count(self, definition, response):
        pairs = definition.key
        correct = sum(1 for i, pair in enumerate(pairs) if response.get(i) == pair.right)
        return correct, len(pairs)

    def feedback(self, correct, total):
        return f"{correct} of {total} pairs matched correctly."


class RankingGrader(QuestionGrader):
    """Partial credit per item placed at its correct position."""

    def count(self, definition, response):
        order = definition.key
        correct = sum(
            1 for i, item in enumerate(order)
            if i < len(response) and response[i] == item
        )
        return correct, len(order)

    def feedback(self, correct, total):
        return f"{correct} of {total} items in the correct position."


class DragDropGrader(QuestionGrader):
    """A zone counts only when it holds exactly its expected items."""

    def count(self, definition, response):
        zones = definition.key
        correct = sum(1 for z in zones if set(response.get(z.zone, [])) == set(z.items))
        return correct, len(zones)

    def feedback(self, correct, total):
        return f"{correct} of {total} zones correct."


GRADERS = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceGrader(),
    QuestionType.FILL_BLANK: FillBlankGrader(),
    QuestionType.MATCHING: MatchingGrader(),
    QuestionType.RANKING: RankingGrader(),
    QuestionType.DRAG_DROP: DragDropGrader(),
}

_uncovered = set(QuestionType) - set(GRADERS) - MANUAL_REVIEW_TYPES
if _uncovered:
    raise RuntimeError(f"No grading strategy for: {sorted(_uncovered)}")


class GradingEngine:

    def __init__(self, decimal_places: int = 2):
        self.quantum = Decimal(1).scaleb(-decimal_places)

    def quantize(self, value) -> Decimal:
        return Decimal(value).quantize(self.quantum, rounding=ROUND_HALF_UP)

    def _zero(self, definition, feedback, error='') -> GradingResult:
        return GradingResult(
            score=self.quantize(0),
            max_score=self.quantize(definition.max_score),
            feedback=feedback,
            error=error,
        )

    def _manual(self, definition, error='') -> GradingResult:
        return GradingResult(
            score=None,
            max_score=self.quantize(definition.max_score),
            requires_manual_review=True,
            feedback="Awaiting instructor review.",
            error=error,
            grading_method='manual_review',
        )

    def grade(self, definition: QuestionDefinition, response) -> GradingResult:
        """Grade an already-decoded response."""
        if not is_auto_gradable(definition.question_type):
            return self._manual(definition)

        if definition.key_error or definition.key is None:
            logger.error(
                f"Question {definition.question_id} has an unusable answer key: "
                f"{definition.key_error or 'missing'}"
            )
            return self._zero(definition, "Question could not be auto-graded.",
                              definition.key_error or "Answer key is missing.")

        if response is None or get_format(definition.question_type).is_empty(response):
            return self._zero(definition, "No answer provided.")

        grader = GRADERS[definition.question_type]
        correct, total = grader.count(definition, response)
        if total == 0:
            return self._zero(definition, "Question has no gradable parts.")

        max_score = Decimal(definition.max_score)
        return GradingResult(
            score=self.quantize(max_score * correct / total),
            max_score=self.quantize(max_score),
            feedback=grader.feedback(correct, total),
        )

    def grade_raw(self, definition: QuestionDefinition, raw) -> GradingResult:
        """Decode a stored/submitted response and grade it.

        A malformed response scores zero on auto-graded types; on manual
        types the decode error is kept on the result for the reviewer.
        """
        try:
            response = get_format(definition.question_type).decode_response(raw)
        except MalformedAnswerError as exc:
            exc.context.setdefault('question_id', definition.question_id)
            if is_auto_gradable(definition.question_type):
                logger.warning(f"Unreadable answer scored as zero: {exc}")
                return self._zero(definition, "Answer could not be read.", exc.message)
            return self._manual(definition, error=exc.message)
        return self.grade(definition, response)
